"""
Intern portal API: phone-based password recovery
"""

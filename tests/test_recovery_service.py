"""
Tests for RecoveryService: eligibility, issuance, resend cooldown,
verification and the guarded password commit.
"""
import asyncio
import threading
from datetime import datetime, timedelta, timezone

import pytest

from intern_portal.core.config import settings
from intern_portal.core.env import clear_env_cache
from intern_portal.services.recovery.challenge_store import ChallengeStore
from intern_portal.services.recovery.errors import (
    AttemptsExceeded,
    ChallengeNotFoundOrExpired,
    CodeMismatch,
    Cooldown,
    IneligibleRole,
    InvalidCodeFormat,
    InvalidPhoneFormat,
    PasswordUpdateFailed,
    SecurityBindingViolation,
    UnregisteredIdentity,
    WeakPassword,
)
from intern_portal.services.recovery.identity import Identity
from intern_portal.services.recovery.service import RecoveryService, debug_echo_enabled
from tests.helpers.recovery_fakes import PHONE, InMemoryIdentityStore, RecordingNotifier

INTERN_ID = 1


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return ChallengeStore(clock=clock, code_generator=lambda: "482913")


@pytest.fixture
def identities():
    identities = InMemoryIdentityStore()
    identities.add(INTERN_ID, "intern", PHONE)
    identities.add(2, "admin", "14155551234")
    return identities


@pytest.fixture
def service(store, identities, notifier):
    return RecoveryService(store=store, identities=identities, notifier=notifier, echo_code=False)


def run(coro):
    return asyncio.run(coro)


class TestRequestChallenge:
    @pytest.mark.asyncio
    async def test_issues_and_dispatches_code(self, service, store, notifier):
        result = await service.request_challenge(PHONE)

        assert result.masked_phone == "********3210"
        assert result.delivered is True
        assert result.debug_code is None
        assert notifier.sent == [(PHONE, "482913")]

        challenge = store.peek(PHONE)
        assert challenge.code == "482913"
        assert challenge.bound_identity.identity_id == INTERN_ID
        assert challenge.bound_identity.role == "intern"
        assert challenge.bound_identity.phone == PHONE

    @pytest.mark.asyncio
    async def test_accepts_formatted_input(self, service, store):
        result = await service.request_challenge("+91 98765 43210")
        assert result.masked_phone == "********3210"
        assert store.peek(PHONE) is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["", "12345", "0919876543210", "91-98765-4321x"])
    async def test_invalid_phone(self, service, notifier, raw):
        with pytest.raises(InvalidPhoneFormat):
            await service.request_challenge(raw)
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_unregistered_phone(self, service, store):
        with pytest.raises(UnregisteredIdentity):
            await service.request_challenge("447700900123")
        assert store.peek("447700900123") is None

    @pytest.mark.asyncio
    async def test_blank_stored_phone_is_unregistered(self, store, notifier):
        class BlankPhoneStore(InMemoryIdentityStore):
            def find_by_phone(self, phone):
                return Identity(id=3, role="intern", phone="  ")

        service = RecoveryService(store=store, identities=BlankPhoneStore(), notifier=notifier)
        with pytest.raises(UnregisteredIdentity) as exc_info:
            await service.request_challenge(PHONE)
        assert "does not have a registered phone" in exc_info.value.message
        assert store.peek(PHONE) is None

    @pytest.mark.asyncio
    async def test_empty_stored_phone_never_matches(self, store, notifier):
        identities = InMemoryIdentityStore()
        identities.add(5, "intern", "")
        service = RecoveryService(store=store, identities=identities, notifier=notifier)

        with pytest.raises(UnregisteredIdentity):
            await service.request_challenge(PHONE)

    @pytest.mark.asyncio
    async def test_admin_is_ineligible(self, service, store, notifier):
        with pytest.raises(IneligibleRole):
            await service.request_challenge("14155551234")
        assert store.peek("14155551234") is None
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_dispatch_failure_keeps_challenge(self, store, identities):
        notifier = RecordingNotifier(fail=True)
        service = RecoveryService(store=store, identities=identities, notifier=notifier)

        result = await service.request_challenge(PHONE)

        assert result.delivered is False
        assert store.peek(PHONE).code == "482913"

    @pytest.mark.asyncio
    async def test_notifier_exception_is_soft_failure(self, store, identities):
        notifier = RecordingNotifier(raise_error=True)
        service = RecoveryService(store=store, identities=identities, notifier=notifier)

        result = await service.request_challenge(PHONE)

        assert result.delivered is False
        assert result.provider == "recording"
        assert store.peek(PHONE) is not None

    @pytest.mark.asyncio
    async def test_debug_echo_when_enabled(self, store, identities, notifier):
        service = RecoveryService(store=store, identities=identities, notifier=notifier, echo_code=True)
        result = await service.request_challenge(PHONE)
        assert result.debug_code == "482913"

    @pytest.mark.asyncio
    async def test_request_overwrites_previous_challenge(self, service, store):
        await service.request_challenge(PHONE)
        first = store.peek(PHONE)
        store.record_failed_attempt(PHONE)

        await service.request_challenge(PHONE)
        second = store.peek(PHONE)

        assert second.challenge_id != first.challenge_id
        assert second.attempts == 0


class TestResendChallenge:
    @pytest.mark.asyncio
    async def test_refused_while_code_valid(self, service, clock, notifier):
        await service.request_challenge(PHONE)

        clock.advance(minutes=3, seconds=30)
        with pytest.raises(Cooldown) as exc_info:
            await service.resend_challenge(PHONE)

        assert exc_info.value.remaining_minutes == 7  # 6.5 rounded up
        assert exc_info.value.status_code == 429
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_refused_just_before_expiry(self, service, clock):
        await service.request_challenge(PHONE)
        clock.advance(minutes=9, seconds=59)

        with pytest.raises(Cooldown) as exc_info:
            await service.resend_challenge(PHONE)
        assert exc_info.value.remaining_minutes == 1

    @pytest.mark.asyncio
    async def test_allowed_at_expiry(self, service, store, clock, notifier):
        await service.request_challenge(PHONE)
        first = store.peek(PHONE)
        clock.advance(minutes=10)

        result = await service.resend_challenge(PHONE)

        assert result.masked_phone == "********3210"
        assert len(notifier.sent) == 2
        assert store.peek(PHONE).challenge_id != first.challenge_id

    @pytest.mark.asyncio
    async def test_allowed_without_previous_challenge(self, service, notifier):
        await service.resend_challenge(PHONE)
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_allowed_after_attempts_exhausted(self, service, notifier):
        await service.request_challenge(PHONE)
        for _ in range(3):
            with pytest.raises((CodeMismatch, AttemptsExceeded)):
                service.verify_and_reset(PHONE, "000000", "abcdef")

        await service.resend_challenge(PHONE)
        assert len(notifier.sent) == 2

    @pytest.mark.asyncio
    async def test_resend_still_checks_eligibility(self, service):
        with pytest.raises(IneligibleRole):
            await service.resend_challenge("14155551234")
        with pytest.raises(InvalidPhoneFormat):
            await service.resend_challenge("abc")


class TestVerifyAndReset:
    def test_scenario_mismatch_weak_password_then_success(self, service, store, identities):
        run(service.request_challenge(PHONE))
        assert store.peek(PHONE).code == "482913"

        with pytest.raises(CodeMismatch) as exc_info:
            service.verify_and_reset(PHONE, "000000", "whatever")
        assert exc_info.value.remaining_attempts == 2
        assert store.peek(PHONE).attempts == 1

        with pytest.raises(WeakPassword):
            service.verify_and_reset(PHONE, "482913", "abc")
        challenge = store.peek(PHONE)
        assert challenge is not None
        assert challenge.attempts == 1

        service.verify_and_reset(PHONE, "482913", "abcdef")

        assert identities.passwords[INTERN_ID] == "abcdef"
        assert store.peek(PHONE) is None

    def test_replay_after_success(self, service):
        run(service.request_challenge(PHONE))
        service.verify_and_reset(PHONE, "482913", "abcdef")

        with pytest.raises(ChallengeNotFoundOrExpired):
            service.verify_and_reset(PHONE, "482913", "abcdef")

    def test_three_wrong_codes_exhaust_challenge(self, service, store, identities):
        run(service.request_challenge(PHONE))

        with pytest.raises(CodeMismatch):
            service.verify_and_reset(PHONE, "000000", "abcdef")
        with pytest.raises(CodeMismatch) as exc_info:
            service.verify_and_reset(PHONE, "111111", "abcdef")
        assert exc_info.value.remaining_attempts == 1
        with pytest.raises(AttemptsExceeded):
            service.verify_and_reset(PHONE, "222222", "abcdef")

        assert store.peek(PHONE) is None
        with pytest.raises(ChallengeNotFoundOrExpired):
            service.verify_and_reset(PHONE, "482913", "abcdef")
        assert INTERN_ID not in identities.passwords

    def test_expired_code_rejected(self, service, clock):
        run(service.request_challenge(PHONE))
        clock.advance(minutes=10)

        with pytest.raises(ChallengeNotFoundOrExpired):
            service.verify_and_reset(PHONE, "482913", "abcdef")

    def test_no_challenge(self, service):
        with pytest.raises(ChallengeNotFoundOrExpired):
            service.verify_and_reset(PHONE, "482913", "abcdef")

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", "48291 ", "４８２９１３"])
    def test_malformed_code_does_not_touch_store(self, service, store, code):
        run(service.request_challenge(PHONE))

        with pytest.raises(InvalidCodeFormat):
            service.verify_and_reset(PHONE, code, "abcdef")
        assert store.peek(PHONE).attempts == 0

    def test_malformed_phone(self, service):
        with pytest.raises(InvalidPhoneFormat):
            service.verify_and_reset("98765", "482913", "abcdef")

    def test_phone_changed_since_issuance(self, service, store, identities):
        run(service.request_challenge(PHONE))
        identities.update(INTERN_ID, phone="919999999999")

        with pytest.raises(SecurityBindingViolation):
            service.verify_and_reset(PHONE, "482913", "abcdef")

        assert store.peek(PHONE) is None
        assert INTERN_ID not in identities.passwords

    def test_role_changed_since_issuance(self, service, store, identities):
        run(service.request_challenge(PHONE))
        identities.update(INTERN_ID, role="admin")

        with pytest.raises(SecurityBindingViolation):
            service.verify_and_reset(PHONE, "482913", "abcdef")

        assert store.peek(PHONE) is None
        assert INTERN_ID not in identities.passwords

    def test_identity_removed_since_issuance(self, service, store, identities):
        run(service.request_challenge(PHONE))
        del identities.identities[INTERN_ID]

        with pytest.raises(SecurityBindingViolation):
            service.verify_and_reset(PHONE, "482913", "abcdef")
        assert store.peek(PHONE) is None

    def test_binding_not_checked_on_wrong_code(self, service, store, identities):
        run(service.request_challenge(PHONE))
        identities.update(INTERN_ID, role="admin")

        with pytest.raises(CodeMismatch):
            service.verify_and_reset(PHONE, "000000", "abcdef")
        assert store.peek(PHONE) is not None

    def test_password_update_failure_reinstates_challenge(self, service, store, identities):
        run(service.request_challenge(PHONE))
        identities.fail_set_password = True

        with pytest.raises(PasswordUpdateFailed) as exc_info:
            service.verify_and_reset(PHONE, "482913", "abcdef")
        assert exc_info.value.status_code == 500
        assert store.peek(PHONE) is not None

        identities.fail_set_password = False
        service.verify_and_reset(PHONE, "482913", "abcdef")
        assert identities.passwords[INTERN_ID] == "abcdef"

    def test_error_messages_do_not_leak_code(self, service):
        run(service.request_challenge(PHONE))
        messages = []
        for code in ("000000", "111111", "222222"):
            try:
                service.verify_and_reset(PHONE, code, "abcdef")
            except (CodeMismatch, AttemptsExceeded) as e:
                messages.append(e.message)

        assert len(messages) == 3
        for message in messages:
            assert "482913" not in message

    def test_custom_password_policy(self, store, identities, notifier):
        service = RecoveryService(store=store, identities=identities, notifier=notifier, min_password_length=10)
        run(service.request_challenge(PHONE))

        with pytest.raises(WeakPassword) as exc_info:
            service.verify_and_reset(PHONE, "482913", "abcdef")
        assert "10 characters" in exc_info.value.message


class TestVerifyConcurrency:
    def test_correct_code_races_only_one_reset(self, store, identities, notifier):
        class CountingIdentities(InMemoryIdentityStore):
            def __init__(self):
                super().__init__()
                self.calls = 0
                self._lock = threading.Lock()

            def set_password(self, identity_id, new_password):
                with self._lock:
                    self.calls += 1
                super().set_password(identity_id, new_password)

        counting = CountingIdentities()
        counting.add(INTERN_ID, "intern", PHONE)
        service = RecoveryService(store=store, identities=counting, notifier=notifier)
        run(service.request_challenge(PHONE))

        outcomes = []
        lock = threading.Lock()
        barrier = threading.Barrier(8)

        def submit():
            barrier.wait()
            try:
                service.verify_and_reset(PHONE, "482913", "abcdef")
                result = "success"
            except ChallengeNotFoundOrExpired:
                result = "not_found"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=submit) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("success") == 1
        assert outcomes.count("not_found") == 7
        assert counting.calls == 1


class TestDebugEcho:
    @pytest.fixture(autouse=True)
    def _echo_flag(self, monkeypatch):
        monkeypatch.setattr(settings, "RECOVERY_DEBUG_ECHO_CODE", True)
        yield
        monkeypatch.undo()
        clear_env_cache()

    def test_enabled_in_local_env(self, monkeypatch):
        monkeypatch.setenv("ENV", "local")
        clear_env_cache()
        assert debug_echo_enabled() is True

    @pytest.mark.parametrize("env", ["prod", "staging", "test"])
    def test_disabled_outside_local_env(self, monkeypatch, env):
        monkeypatch.setenv("ENV", env)
        clear_env_cache()
        assert debug_echo_enabled() is False

    def test_service_picks_up_echo_setting(self, monkeypatch, store, identities, notifier):
        monkeypatch.setenv("ENV", "dev")
        clear_env_cache()
        service = RecoveryService(store=store, identities=identities, notifier=notifier)

        result = run(service.request_challenge(PHONE))
        assert result.debug_code == "482913"


class TestCorrectVersusWrongRace:
    def test_only_the_correct_code_wins(self, store, identities, notifier):
        service = RecoveryService(store=store, identities=identities, notifier=notifier)

        for _ in range(25):
            run(service.request_challenge(PHONE))
            outcomes = {}
            barrier = threading.Barrier(2)

            def submit(code):
                barrier.wait()
                try:
                    service.verify_and_reset(PHONE, code, "abcdef")
                    outcomes[code] = "success"
                except (CodeMismatch, ChallengeNotFoundOrExpired) as e:
                    outcomes[code] = e.code

            threads = [threading.Thread(target=submit, args=(code,)) for code in ("482913", "000000")]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert outcomes["482913"] == "success"
            assert outcomes["000000"] in ("code_mismatch", "challenge_not_found")
            assert store.peek(PHONE) is None


class TestIdentityLookupOffEventLoop:
    @pytest.mark.asyncio
    async def test_find_by_phone_runs_in_worker_thread(self, store, notifier):
        loop_thread = threading.get_ident()

        class ThreadRecordingStore(InMemoryIdentityStore):
            lookup_thread = None

            def find_by_phone(self, phone):
                self.lookup_thread = threading.get_ident()
                return super().find_by_phone(phone)

        identities = ThreadRecordingStore()
        identities.add(INTERN_ID, "intern", PHONE)
        service = RecoveryService(store=store, identities=identities, notifier=notifier)

        await service.request_challenge(PHONE)

        assert identities.lookup_thread is not None
        assert identities.lookup_thread != loop_thread


class TestExplicitPolicyOverrides:
    def test_falsy_overrides_are_kept(self, store, identities, notifier):
        service = RecoveryService(
            store=store, identities=identities, notifier=notifier, eligible_role="", min_password_length=0
        )

        assert service.eligible_role == ""
        assert service.min_password_length == 0

    def test_defaults_come_from_settings(self, store, identities, notifier):
        service = RecoveryService(store=store, identities=identities, notifier=notifier)

        assert service.eligible_role == settings.RECOVERY_ELIGIBLE_ROLE
        assert service.min_password_length == settings.PASSWORD_MIN_LENGTH

    @pytest.mark.asyncio
    async def test_zero_length_policy_accepts_empty_password(self, store, identities, notifier):
        service = RecoveryService(store=store, identities=identities, notifier=notifier, min_password_length=0)
        await service.request_challenge(PHONE)

        service.verify_and_reset(PHONE, "482913", "")

        assert identities.passwords[INTERN_ID] == ""

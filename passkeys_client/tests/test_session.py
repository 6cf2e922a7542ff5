from __future__ import annotations

from passkeys_client.errors import NoCredentialAvailable, UserCancelled
from passkeys_client.session import CeremonySession, Channel, Outcome


def test_one_outstanding_attempt_per_channel():
    session = CeremonySession()
    auto = session.begin(Channel.AUTOMATIC)
    assert auto is not None
    assert session.begin(Channel.AUTOMATIC) is None
    manual = session.begin(Channel.MANUAL)
    assert manual is not None
    assert session.begin(Channel.MANUAL) is None


def test_late_automatic_result_after_manual_success_is_dropped():
    session = CeremonySession()
    auto = session.begin(Channel.AUTOMATIC)
    manual = session.begin(Channel.MANUAL)

    assert session.settle(manual, Outcome.success("alice"))
    assert not session.settle(auto, Outcome.success("mallory"))
    assert session.result == "alice"


def test_late_manual_result_after_automatic_success_is_dropped():
    session = CeremonySession()
    auto = session.begin(Channel.AUTOMATIC)
    manual = session.begin(Channel.MANUAL)

    assert session.settle(auto, Outcome.success("alice"))
    assert not session.settle(manual, Outcome.failure(UserCancelled("late")))
    assert session.result == "alice"
    assert session.begin(Channel.MANUAL) is None


def test_manual_start_takes_ownership_of_failures():
    session = CeremonySession()
    auto = session.begin(Channel.AUTOMATIC)
    assert session.owner == auto
    manual = session.begin(Channel.MANUAL)
    assert session.owner == manual

    assert not session.settle(auto, Outcome.failure(NoCredentialAvailable("none")))
    assert session.settle(manual, Outcome.failure(RuntimeError("boom")))
    assert session.owner is None
    assert not session.completed


def test_automatic_failure_applies_when_it_owns_the_session():
    session = CeremonySession()
    auto = session.begin(Channel.AUTOMATIC)
    assert session.settle(auto, Outcome.failure(NoCredentialAvailable("none")))
    assert not session.pending(Channel.AUTOMATIC)
    assert session.begin(Channel.AUTOMATIC) is not None


def test_settling_twice_is_a_no_op():
    session = CeremonySession()
    manual = session.begin(Channel.MANUAL)
    assert session.settle(manual, Outcome.failure(UserCancelled("dismissed")))
    assert not session.settle(manual, Outcome.success("alice"))
    assert session.result is None

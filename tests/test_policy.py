from __future__ import annotations

import pytest

from core.config import PolicyConfig
from core.groups import profile_group
from core.models import FEMALE, MALE, MatchResult, MembershipStatus
from core.phones import ExactPhoneMatcher, ProtectedPhoneMatcher
from core.policy import Verdict, evaluate, membership_decision

PHONE = "5511987654321"
CONFIG = PolicyConfig()


def _match(status: MembershipStatus = MembershipStatus.ACTIVE, **flags) -> MatchResult:
    flags.setdefault("gender", MALE)
    return MatchResult(found=True, status=status, registration_id=42, **flags)


def _adult(**flags) -> MatchResult:
    return _match(is_adult=True, **flags)


def _teen(**flags) -> MatchResult:
    flags.setdefault("child_phone_matches_legal_rep", True)
    return _match(in_age_band=True, **flags)


def _evaluate(group_name: str, match: MatchResult, config: PolicyConfig = CONFIG, **kwargs):
    return evaluate(profile_group(group_name, config), kwargs.pop("phone", PHONE), match, config, **kwargs)


@pytest.mark.parametrize(
    "group_name",
    ["MB | Geral", "JB | Geral", "R.JB | Responsáveis", "A.JB | Xadrez", "Org.MB | Diretoria", "Amigos"],
)
def test_under_age_floor_is_removed_in_any_group(group_name: str) -> None:
    decision = _evaluate(group_name, _match(below_age_floor=True, has_accepted_terms=True))

    assert decision.verdict is Verdict.REMOVE
    assert decision.reason == "under minimum age"


def test_admin_and_unresolved_are_skipped() -> None:
    assert _evaluate("MB | Geral", _match(below_age_floor=True), is_admin=True).verdict is Verdict.SKIP
    assert _evaluate("MB | Geral", MatchResult.missing(), phone=None).reason == "unresolved"


def test_never_remove_numbers_are_skipped() -> None:
    config = PolicyConfig(is_never_remove=ProtectedPhoneMatcher([PHONE]))

    decision = _evaluate("MB | Geral", _match(below_age_floor=True), config)

    assert decision.verdict is Verdict.SKIP
    assert decision.reason == "protected"


def test_age_exception_bypasses_age_rules_only() -> None:
    config = PolicyConfig(is_age_exception=ExactPhoneMatcher([PHONE]))

    kept = _evaluate("MB | Geral", _teen(), config)
    still_inactive = _evaluate("MB | Geral", _teen(status=MembershipStatus.INACTIVE), config)
    gender = _evaluate("MB | Mulheres", _adult(), config)

    assert kept.verdict is Verdict.KEEP
    assert kept.age_exception
    assert still_inactive.verdict is Verdict.DEFER
    assert gender.reason == "gender mismatch"


def test_operational_group_checks_membership_only() -> None:
    assert _evaluate("Org.MB | Diretoria", _adult()).verdict is Verdict.KEEP
    assert _evaluate("Org.MB | JB", _adult()).verdict is Verdict.KEEP

    inactive = _evaluate("Org.MB | Diretoria", _adult(status=MembershipStatus.INACTIVE))
    missing = _evaluate("Org.MB | Diretoria", MatchResult.missing())

    assert (inactive.verdict, inactive.reason) == (Verdict.DEFER, "inactive")
    assert (missing.verdict, missing.reason) == (Verdict.DEFER, "not found")


def test_female_only_group() -> None:
    assert _evaluate("MB | Mulheres", _adult()).reason == "gender mismatch"
    assert _evaluate("MB | Mulheres", _adult(gender=FEMALE)).verdict is Verdict.KEEP
    # A man sharing the phone with an adult woman is not removed.
    assert _evaluate("MB | Mulheres", _adult(has_adult_female=True)).verdict is Verdict.KEEP
    assert _evaluate("MB | Mulheres", _adult(gender=None)).verdict is Verdict.KEEP


def test_child_phone_mismatch_in_representative_group() -> None:
    match = _teen(has_accepted_terms=True, child_phone_matches_legal_rep=False)

    decision = _evaluate("R.JB | Responsáveis", match)

    assert decision.verdict is Verdict.REMOVE
    assert decision.reason == "phone mismatch"
    # The same phone passes the generic age-band rule.
    assert _evaluate("JB | Geral", match).verdict is Verdict.KEEP


def test_representative_group_rules() -> None:
    representative = dict(is_legal_representative=True, represents_minor=True)

    assert _evaluate("R.JB | Responsáveis", _adult()).reason == "not a representative"
    assert _evaluate("R.JB | Responsáveis", _adult(**representative)).verdict is Verdict.KEEP
    assert (
        _evaluate("R.JB | Familiares de JB 12+", _adult(**representative)).reason
        == "not representing age band"
    )
    assert (
        _evaluate("R.JB | Familiares de JB 12+", _adult(represents_age_band=True, **representative)).verdict
        is Verdict.KEEP
    )
    assert (
        _evaluate("R.JB | Responsáveis", _adult(is_legal_representative=True)).reason
        == "no longer applicable"
    )


def test_age_band_group_rules() -> None:
    assert _evaluate("JB | Geral", _adult()).reason == "adult not representative"
    assert _evaluate("JB | Geral", _adult(is_legal_representative=True)).reason == "adult not representative"
    assert (
        _evaluate("JB | Geral", _adult(is_legal_representative=True, represents_minor=True)).verdict
        is Verdict.KEEP
    )
    assert _evaluate("JB | Geral", _teen()).reason == "missing terms acceptance"
    assert _evaluate("JB | Geral", _teen(has_accepted_terms=True)).verdict is Verdict.KEEP


def test_minor_band_variant_follows_age_band_rules() -> None:
    assert _evaluate("M.JB | Mentores", _adult()).reason == "adult not representative"
    assert _evaluate("M.JB | Mentores", _teen()).reason == "missing terms acceptance"
    assert _evaluate("M.JB | Mentores", _teen(has_accepted_terms=True)).verdict is Verdict.KEEP


def test_exempt_age_band_group_skips_age_band_rule() -> None:
    assert _evaluate("A.JB | Xadrez", _adult()).verdict is Verdict.KEEP
    assert _evaluate("A.JB | Xadrez", _teen()).verdict is Verdict.KEEP


def test_unrestricted_group_rule() -> None:
    assert _evaluate("MB | Geral", _teen(has_accepted_terms=True)).reason == "age-restricted member in unrestricted group"
    assert _evaluate("MB | Xadrez", _teen()).verdict is Verdict.KEEP
    assert _evaluate("MB | Geral", _adult()).verdict is Verdict.KEEP


def test_fallback_defers_missing_and_inactive() -> None:
    missing = _evaluate("MB | Geral", MatchResult.missing())
    inactive = _evaluate("JB | Geral", _teen(has_accepted_terms=True, status=MembershipStatus.INACTIVE))

    assert (missing.verdict, missing.reason) == (Verdict.DEFER, "not found")
    assert (inactive.verdict, inactive.reason) == (Verdict.DEFER, "inactive")


def test_rule_removal_wins_over_inactive_status() -> None:
    decision = _evaluate("JB | Geral", _adult(status=MembershipStatus.INACTIVE))

    assert decision.verdict is Verdict.REMOVE
    assert decision.reason == "adult not representative"


def test_membership_decision_keeps_active() -> None:
    assert membership_decision(_adult()).verdict is Verdict.KEEP

import pytest

from engine.dedupe import DedupeMode, fncDeduplicateRecords
from engine.models import AssignmentSource, ConfigurationError, Service

from builders import record, user


ALICE = user("u1", "Alice")
BOB = user("u2", "Bob")


def _mixed():
    return [
        record(ALICE, "Global Administrator", Service.AZURE_AD),
        record(ALICE, "Exchange Administrator", Service.AZURE_AD),
        record(ALICE, "Exchange Administrator", Service.EXCHANGE),
        record(ALICE, "Global Administrator", Service.EXCHANGE, rid="ga-exo-copy"),
        record(BOB, "Exchange Administrator", Service.EXCHANGE, source=AssignmentSource.PIM_ELIGIBLE),
    ]


def test_mode_none_returns_input_unchanged():
    records = _mixed()
    result = fncDeduplicateRecords(records)

    assert result.records == records
    assert result.removed == 0
    assert result.mode == "None"


def test_strict_matches_principal_role_id_and_scope():
    records = _mixed()
    result = fncDeduplicateRecords(records, "Strict")

    # the two Exchange Administrator copies share a role id; the GA copy does not
    assert result.removed == 1
    assert len(result.records) == 4


def test_loose_matches_by_role_name():
    result = fncDeduplicateRecords(_mixed(), DedupeMode.LOOSE)

    assert result.removed == 2
    assert [(r.principal.id, r.role.display_name) for r in result.records] == [
        ("u1", "Global Administrator"),
        ("u1", "Exchange Administrator"),
        ("u2", "Exchange Administrator"),
    ]


def test_service_preference_keeps_azure_ad_by_default():
    records = [
        record(ALICE, "Exchange Administrator", Service.EXCHANGE),
        record(ALICE, "Exchange Administrator", Service.AZURE_AD),
    ]

    kept = fncDeduplicateRecords(records, "ServicePreference").records
    specific = fncDeduplicateRecords(records, "service_preference", prefer_specific_service=True).records

    assert [r.service for r in kept] == [Service.AZURE_AD]
    assert [r.service for r in specific] == [Service.EXCHANGE]


def test_role_scoped_only_merges_overarching_roles():
    result = fncDeduplicateRecords(_mixed(), "RoleScoped")

    names = [(r.service, r.role.display_name) for r in result.records]
    assert result.removed == 1
    assert names.count((Service.AZURE_AD, "Global Administrator")) == 1
    assert (Service.EXCHANGE, "Global Administrator") not in names
    # service-specific copies from different passes are kept
    assert (Service.AZURE_AD, "Exchange Administrator") in names
    assert (Service.EXCHANGE, "Exchange Administrator") in names


@pytest.mark.parametrize("mode", [m.value for m in DedupeMode])
def test_every_mode_is_idempotent(mode):
    once = fncDeduplicateRecords(_mixed(), mode, prefer_specific_service=True)
    twice = fncDeduplicateRecords(once.records, mode, prefer_specific_service=True)

    assert twice.records == once.records
    assert twice.removed == 0


def test_unknown_mode_is_configuration_error():
    with pytest.raises(ConfigurationError):
        fncDeduplicateRecords(_mixed(), "Aggressive")

from engine.models import StatusCode, VerifyResponse
from engine.signals import is_catch_all_message, is_ok, normalize_status_bucket, signals_missing_mx


def test_no_mx_phrases_detected() -> None:
    for message in (
        "No MX records found",
        "Domain has no mx",
        "MX record missing",
        "domain without MX",
        "MX lookup did not resolve: not found",
    ):
        assert signals_missing_mx(VerifyResponse(email="a@b.c", message=message)), message


def test_no_mx_checks_every_field() -> None:
    assert signals_missing_mx(VerifyResponse(email="a@b.c", code="no mx"))
    assert signals_missing_mx(VerifyResponse(email="a@b.c", error="MX missing for domain"))
    assert signals_missing_mx(VerifyResponse(email="a@b.c", raw={"code": "No MX"}))
    assert signals_missing_mx(VerifyResponse(email="a@b.c", raw={"message": "no MX host"}))
    assert signals_missing_mx(VerifyResponse(email="a@b.c", raw={"reason": "mx not present"}))


def test_no_mx_false_positives_avoided() -> None:
    assert not signals_missing_mx(None)
    assert not signals_missing_mx(VerifyResponse(email="a@b.c", message="Catch-All"))
    assert not signals_missing_mx(VerifyResponse(email="a@b.c", message="MX ok"))
    assert not signals_missing_mx(VerifyResponse(email="a@b.c", message="No mailbox"))
    assert not signals_missing_mx(VerifyResponse(email="a@b.c", raw=["No MX"]))


def test_ok_and_catch_all() -> None:
    assert is_ok(VerifyResponse(email="a@b.c", code="ok"))
    assert not is_ok(VerifyResponse(email="a@b.c", code="OK "))
    assert not is_ok(None)
    assert is_catch_all_message("Catch-All")
    assert not is_catch_all_message("catch-all")


def test_status_buckets() -> None:
    assert normalize_status_bucket(StatusCode.valid) == "valid"
    assert normalize_status_bucket("catchall_default") == "catchall_default"
    assert normalize_status_bucket(StatusCode.skipped_missing_fields) == "other"
    assert normalize_status_bucket("weird") == "other"
    assert normalize_status_bucket(None) == "other"

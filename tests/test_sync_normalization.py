from datetime import date

from judgesync.services.sync_normalization import (
    case_number_key,
    classify_case_type,
    court_to_court,
    create_docket_hash,
    docket_to_case,
    format_date,
    normalize_case_number,
    normalize_jurisdiction,
    normalize_outcome_label,
    opinion_to_case,
    person_to_judge,
    resource_id_from_url,
)


def test_normalize_jurisdiction():
    assert normalize_jurisdiction("ca") == "CA"
    assert normalize_jurisdiction("United States") == "US"
    assert normalize_jurisdiction("State of California") == "CA"
    assert normalize_jurisdiction("  ") is None
    assert normalize_jurisdiction(None) is None


def test_case_number_normalization_and_key():
    assert normalize_case_number(" b123 – 456 ") == "B123 - 456"
    assert normalize_case_number("", fallback="CL-9") == "CL-9"
    assert normalize_case_number(None) is None
    assert case_number_key("B123 - 456") == "B123456"
    assert case_number_key("---") is None


def test_docket_hash_is_stable_and_order_sensitive():
    first = create_docket_hash(case_number_key="B123", jurisdiction="ca", judge_id="j1", filing_date=date(2026, 1, 2))
    again = create_docket_hash(case_number_key="b123", jurisdiction="CA", judge_id="j1", filing_date="2026-01-02")
    other = create_docket_hash(case_number_key="B124", jurisdiction="CA", judge_id="j1", filing_date="2026-01-02")

    assert first == again
    assert first != other
    assert len(first) == 40
    assert create_docket_hash(case_number_key=None) is None


def test_outcome_labels():
    assert normalize_outcome_label("Case dismissed with prejudice").category == "dismissed"
    assert normalize_outcome_label("Settled").label == "Settled"
    assert normalize_outcome_label("REMANDED to lower court").category == "remanded"
    assert normalize_outcome_label(None).label is None
    unusual = normalize_outcome_label("withdrawn_by_party")
    assert unusual.category == "other"
    assert unusual.label == "Withdrawn By Party"


def test_format_date_and_resource_ids():
    assert format_date("2026-03-04T10:00:00Z") == date(2026, 3, 4)
    assert format_date("not a date") is None
    assert format_date(None) is None
    assert resource_id_from_url("https://www.courtlistener.com/api/rest/v4/clusters/502/") == "502"
    assert resource_id_from_url(17) == "17"
    assert resource_id_from_url("abc") is None


def test_classify_case_type():
    assert classify_case_type({"jurisdiction_type": "Criminal"}) == "Criminal"
    assert classify_case_type({"case_name": "In re Marriage of Lee"}) == "Family Law"
    assert classify_case_type({"nature_of_suit": "Bankruptcy Appeal"}) == "Bankruptcy"
    assert classify_case_type({}) == "General Litigation"


def test_opinion_to_case_prefers_cluster_fields():
    opinion = {"id": 11, "cluster": "https://www.courtlistener.com/api/rest/v4/clusters/501/"}
    cluster = {
        "id": 501,
        "case_name": "People v. Smith",
        "docket_number": "b301234",
        "date_filed": "2026-10-01",
        "precedential_status": "Published",
        "absolute_url": "/opinion/501/people-v-smith/",
    }

    case = opinion_to_case(opinion, cluster, jurisdiction="ca")

    assert case.courtlistener_id == "cluster_501"
    assert case.case_name == "People v. Smith"
    assert case.case_number == "B301234"
    assert case.status == "decided"
    assert case.case_type == "Opinion"
    assert case.outcome == "Published"
    assert case.jurisdiction == "CA"
    assert case.decision_date == date(2026, 10, 1)
    assert case.source_url == "https://www.courtlistener.com/opinion/501/people-v-smith/"


def test_opinion_without_cluster_uses_opinion_id():
    case = opinion_to_case({"id": 77})
    assert case.courtlistener_id == "opinion_77"
    assert case.case_number == "CL-O77"
    assert case.case_name == "Unknown Case"
    assert opinion_to_case({}) is None


def test_docket_to_case():
    docket = {
        "id": 900,
        "case_name": "Acme Corp. v. Roadrunner",
        "docket_number": "19-cv-1",
        "date_filed": "2025-02-01",
        "date_terminated": "2026-01-15",
        "nature_of_suit": "Contract: Other",
        "jurisdiction_type": "civil",
        "status": "Settled",
    }

    case = docket_to_case(docket, judge_id="j1", jurisdiction="CA")

    assert case.courtlistener_id == "docket_900"
    assert case.status == "settled"
    assert case.case_type == "Civil Litigation"
    assert case.filing_date == date(2025, 2, 1)
    assert case.decision_date == date(2026, 1, 15)
    assert case.summary.startswith("Filed 2025-02-01 | Closed 2026-01-15")
    assert case.docket_hash == create_docket_hash(
        case_number_key="19CV1",
        jurisdiction="CA",
        judge_id="j1",
        courtlistener_id="900",
        filing_date=date(2025, 2, 1),
    )
    assert docket_to_case({"id": 1}) is None


def test_open_docket_is_pending():
    case = docket_to_case({"id": 5, "date_filed": "2026-05-01"})
    assert case.status == "pending"
    assert case.outcome is None


def test_person_to_judge_uses_current_position():
    person = {
        "id": 77,
        "name_full": "Jane Q. Doe",
        "positions": [
            {"position_type": "Commissioner", "court": {"full_name": "Municipal Court"}, "date_termination": "2014-12-31"},
            {
                "position_type": "Judge",
                "court": {"full_name": "Superior Court of California, County of Los Angeles"},
                "date_start": "2015-01-05",
                "date_termination": None,
            },
        ],
        "educations": [{"school": {"name": "Stanford"}, "degree": "JD"}],
    }

    judge = person_to_judge(person, default_jurisdiction="NY")

    assert judge.courtlistener_id == "77"
    assert judge.name == "Jane Q. Doe"
    assert judge.court_name == "Superior Court of California, County of Los Angeles"
    assert judge.jurisdiction == "CA"
    assert judge.appointed_date == date(2015, 1, 5)
    assert judge.education == "Stanford (JD)"
    assert judge.bio == (
        "Commissioner at Municipal Court; Judge at Superior Court of California, County of Los Angeles"
    )


def test_person_without_positions_keeps_default_jurisdiction():
    judge = person_to_judge({"id": 5, "name_first": "Ann", "name_last": "Lee"}, default_jurisdiction="CA")
    assert judge.name == "Ann Lee"
    assert judge.jurisdiction == "CA"
    assert judge.bio is None
    assert person_to_judge({}) is None


def test_court_to_court():
    state = court_to_court({"id": "cal", "short_name": "Cal.", "full_name": "California Supreme Court", "jurisdiction": "S"})
    federal = court_to_court({"id": "ca9", "full_name": "Court of Appeals for the Ninth Circuit", "jurisdiction": "F"})

    assert state.jurisdiction == "CA"
    assert state.court_type == "state"
    assert state.name == "Cal."
    assert federal.court_type == "federal"
    assert federal.jurisdiction is None
    assert court_to_court({}) is None

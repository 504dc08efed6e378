import pytest

from intelliform.business.problem_pipeline import ProblemRankingPipeline
from intelliform.model.errors import AIUnavailableError, MalformedAIOutputError
from intelliform.model.form_schemas import RankedProblemGroup


def row(problem, submission_id, form_id="form-1", form_name="Onboarding feedback"):
    return {"problem": problem, "submission_id": submission_id, "form_id": form_id, "form_name": form_name}


def group(problem, ids, count=None, solutions=()):
    return RankedProblemGroup(
        problem=problem,
        count=len(set(ids)) if count is None else count,
        ids=list(ids),
        solutions=list(solutions)
    )


ROWS = [
    row("slow onboarding", "s1"),
    row("onboarding takes too long", "s2"),
    row("the onboarding process is slow", "s3", form_id="form-2", form_name="Support survey"),
    row("missing invoices", "s1"),
]


def test_groups_are_sorted_by_count_and_carry_form_info(scripted_ai):
    scripted_ai.rankings.append([
        group("Missing invoices", ["s1"], solutions=["Email invoices monthly"]),
        group("Slow onboarding", ["s1", "s2", "s3"], solutions=["Shorten the checklist"]),
    ])

    groups = ProblemRankingPipeline(scripted_ai).run(ROWS)

    assert [g.problem for g in groups] == ["Slow onboarding", "Missing invoices"]
    slow = groups[0]
    assert slow.count == 3
    assert slow.ids == ["s1", "s2", "s3"]
    assert slow.form_names == ["Onboarding feedback", "Support survey"]
    assert [(f.form_id, f.submission_id) for f in slow.forms] == [
        ("form-1", "s1"), ("form-1", "s2"), ("form-2", "s3")
    ]

    pairs, violations = scripted_ai.rank_calls[0]
    assert ("slow onboarding", "s1") in pairs
    assert violations is None


def test_ties_are_ordered_by_name(scripted_ai):
    scripted_ai.rankings.append([
        group("billing errors", ["s2"]),
        group("Account lockouts", ["s1"]),
    ])

    groups = ProblemRankingPipeline(scripted_ai).run([row("billing", "s2"), row("locked out", "s1")])

    assert [g.problem for g in groups] == ["Account lockouts", "billing errors"]


def test_solutions_are_capped_at_three(scripted_ai):
    scripted_ai.rankings.append([
        group("Slow onboarding", ["s1"], solutions=["a", "b", " ", "c", "d"]),
    ])

    groups = ProblemRankingPipeline(scripted_ai).run([row("slow", "s1")])

    assert groups[0].solutions == ["a", "b", "c"]


def test_repeated_id_with_count_one_is_accepted(scripted_ai):
    scripted_ai.rankings.append([group("Slow onboarding", ["s1", "s1"], count=1)])

    groups = ProblemRankingPipeline(scripted_ai).run([row("slow", "s1"), row("too slow", "s1")])

    assert groups[0].count == 1
    assert groups[0].ids == ["s1"]
    assert len(scripted_ai.rank_calls) == 1


def test_contract_violation_is_requested_again_with_details(scripted_ai):
    scripted_ai.rankings.append([group("Slow onboarding", ["s1", "s9"])])
    scripted_ai.rankings.append([group("Slow onboarding", ["s1"])])

    groups = ProblemRankingPipeline(scripted_ai).run([row("slow", "s1")])

    assert groups[0].ids == ["s1"]
    assert len(scripted_ai.rank_calls) == 2
    _, violations = scripted_ai.rank_calls[1]
    assert any("s9" in v for v in violations)


def test_second_violation_raises_malformed(scripted_ai):
    scripted_ai.rankings.append([group("Slow onboarding", ["s1", "s2"], count=5)])
    scripted_ai.rankings.append([group("   ", ["s1"])])

    with pytest.raises(MalformedAIOutputError):
        ProblemRankingPipeline(scripted_ai).run([row("slow", "s1"), row("slow too", "s2")])


def test_group_without_ids_is_a_violation(scripted_ai):
    scripted_ai.rankings.append([group("Slow onboarding", [], count=0)])
    scripted_ai.rankings.append([group("Slow onboarding", [], count=0)])

    with pytest.raises(MalformedAIOutputError):
        ProblemRankingPipeline(scripted_ai).run([row("slow", "s1")])


def test_no_problems_makes_no_ai_call(scripted_ai):
    assert ProblemRankingPipeline(scripted_ai).run([]) == []
    assert ProblemRankingPipeline(scripted_ai).run([row("   ", "s1")]) == []
    assert scripted_ai.rank_calls == []


def test_unavailable_ai_propagates(scripted_ai):
    scripted_ai.rankings.append(AIUnavailableError("AI service unavailable"))

    with pytest.raises(AIUnavailableError):
        ProblemRankingPipeline(scripted_ai).run([row("slow", "s1")])
    assert len(scripted_ai.rank_calls) == 1


def test_shared_issue_across_submissions_forms_one_group(scripted_ai):
    scripted_ai.rankings.append([
        group("Office tour during onboarding", ["sub2"], solutions=["Schedule the tour in week one"]),
        group("Paperwork issues during onboarding", ["sub1", "sub2"], solutions=["Send paperwork ahead"]),
    ])
    rows = [
        row("paperwork issues during onboarding", "sub1"),
        row("paperwork issues and office tour during onboarding", "sub2"),
    ]

    groups = ProblemRankingPipeline(scripted_ai).run(rows)

    assert [(g.problem, g.count, g.ids) for g in groups] == [
        ("Paperwork issues during onboarding", 2, ["sub1", "sub2"]),
        ("Office tour during onboarding", 1, ["sub2"]),
    ]

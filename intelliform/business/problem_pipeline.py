from typing import Any, Dict, List, Literal, Optional, Tuple, TypedDict

from langgraph.graph import END, StateGraph

from intelliform.business.ai_service import AIService
from intelliform.model.errors import IntelliFormError, MalformedAIOutputError
from intelliform.model.form_schemas import ProblemGroup, ProblemGroupForm, RankedProblemGroup
from intelliform.utils.logger_config import get_logger

logger = get_logger(__name__)

MAX_SOLUTIONS = 3
MAX_RANKING_ATTEMPTS = 2


class ProblemRankingState(TypedDict):
    """State for the problem ranking workflow"""
    problems: List[Dict[str, Any]]  # {problem, submission_id, form_id, form_name}
    pairs: List[Tuple[str, str]]  # (problem, submission_id)
    submission_forms: Dict[str, Dict[str, str]]
    ranked_groups: List[RankedProblemGroup]
    violations: List[str]
    attempts: int
    groups: List[ProblemGroup]
    error_details: Optional[str]
    error: Optional[IntelliFormError]


class ProblemRankingPipeline:
    """Cross-submission problem canonicalization as a LangGraph workflow.

    collect -> rank -> validate -> finalize, where validate sends a bad
    answer back to rank once before giving up with MalformedAIOutputError.
    """

    def __init__(self, ai_service: AIService):
        self.ai_service = ai_service
        workflow = self._create_workflow()
        self.app = workflow.compile()

    def _create_workflow(self) -> StateGraph:
        workflow = StateGraph(ProblemRankingState)

        workflow.add_node("collect", self._collect_node)
        workflow.add_node("rank", self._rank_node)
        workflow.add_node("validate", self._validate_node)
        workflow.add_node("finalize", self._finalize_node)
        workflow.add_node("error_handler", self._error_handler_node)

        workflow.set_entry_point("collect")

        workflow.add_conditional_edges(
            "collect",
            self._check_collected,
            {
                "rank": "rank",
                "empty": END
            }
        )
        workflow.add_conditional_edges(
            "rank",
            self._check_for_errors,
            {
                "continue": "validate",
                "error": "error_handler"
            }
        )
        workflow.add_conditional_edges(
            "validate",
            self._check_validation,
            {
                "valid": "finalize",
                "retry": "rank",
                "error": "error_handler"
            }
        )
        workflow.add_edge("finalize", END)
        workflow.add_edge("error_handler", END)

        return workflow

    def run(self, problems: List[Dict[str, Any]]) -> List[ProblemGroup]:
        """Group unresolved problem rows; raises the AI error that stopped the run"""
        initial_state = ProblemRankingState(
            problems=problems,
            pairs=[],
            submission_forms={},
            ranked_groups=[],
            violations=[],
            attempts=0,
            groups=[],
            error_details=None,
            error=None
        )

        result = self.app.invoke(initial_state)

        if result.get("error") is not None:
            raise result["error"]
        return result.get("groups", [])

    def _check_collected(self, state: ProblemRankingState) -> Literal["rank", "empty"]:
        return "rank" if state["pairs"] else "empty"

    def _check_for_errors(self, state: ProblemRankingState) -> Literal["continue", "error"]:
        if state.get("error_details"):
            return "error"
        return "continue"

    def _check_validation(self, state: ProblemRankingState) -> Literal["valid", "retry", "error"]:
        if state.get("error_details"):
            return "error"
        if state["violations"]:
            return "retry"
        return "valid"

    def _collect_node(self, state: ProblemRankingState) -> ProblemRankingState:
        """Node: flatten problem rows into (problem, submission_id) pairs"""
        pairs = []
        submission_forms = {}
        for row in state["problems"]:
            text = (row.get("problem") or "").strip()
            if not text:
                continue
            pairs.append((text, row["submission_id"]))
            submission_forms[row["submission_id"]] = {
                "form_id": row.get("form_id"),
                "form_name": row.get("form_name")
            }

        state["pairs"] = pairs
        state["submission_forms"] = submission_forms
        logger.info(f"📥 Ranking {len(pairs)} problem(s) from {len(submission_forms)} submission(s)")
        return state

    def _rank_node(self, state: ProblemRankingState) -> ProblemRankingState:
        """Node: ask the AI to canonicalize the pairs"""
        state["attempts"] += 1
        try:
            state["ranked_groups"] = self.ai_service.rank_problems(
                state["pairs"], violations=state["violations"] or None
            )
        except IntelliFormError as e:
            state["error_details"] = e.message
            state["error"] = e
        return state

    def _validate_node(self, state: ProblemRankingState) -> ProblemRankingState:
        """Node: enforce the group contract on the AI's answer"""
        known_ids = set(state["submission_forms"])
        violations = []

        for group in state["ranked_groups"]:
            name = group.problem.strip()
            if not name:
                violations.append("a group has an empty problem name")
                continue

            unique_ids = list(dict.fromkeys(group.ids))
            if not unique_ids:
                violations.append(f'group "{name}" lists no submission ids')
            unknown = [i for i in unique_ids if i not in known_ids]
            if unknown:
                violations.append(f'group "{name}" lists unknown submission ids {unknown}')
            if group.count != len(unique_ids):
                violations.append(
                    f'group "{name}" has count {group.count} but {len(unique_ids)} distinct submission ids'
                )

        state["violations"] = violations
        if violations:
            logger.warning(f"⚠️ Ranking attempt {state['attempts']} broke the group contract: {violations}")
            if state["attempts"] >= MAX_RANKING_ATTEMPTS:
                error = MalformedAIOutputError("AI problem ranking violated the group contract: " + "; ".join(violations))
                state["error_details"] = error.message
                state["error"] = error
        return state

    def _finalize_node(self, state: ProblemRankingState) -> ProblemRankingState:
        """Node: de-duplicate ids, attach form info and sort"""
        groups = []
        for group in state["ranked_groups"]:
            ids = list(dict.fromkeys(group.ids))
            forms = [
                ProblemGroupForm(form_id=state["submission_forms"][i]["form_id"], submission_id=i)
                for i in ids
            ]
            form_names = list(dict.fromkeys(
                state["submission_forms"][i]["form_name"] for i in ids
                if state["submission_forms"][i]["form_name"]
            ))
            solutions = [s.strip() for s in group.solutions if s.strip()][:MAX_SOLUTIONS]

            groups.append(ProblemGroup(
                problem=group.problem.strip(),
                count=len(ids),
                ids=ids,
                solutions=solutions,
                form_names=form_names,
                forms=forms
            ))

        groups.sort(key=lambda g: (-g.count, g.problem.casefold(), g.problem))
        state["groups"] = groups
        logger.info(f"✅ Ranked into {len(groups)} problem group(s)")
        return state

    def _error_handler_node(self, state: ProblemRankingState) -> ProblemRankingState:
        """Node: log the failure; run() re-raises it"""
        logger.error(f"❌ Problem ranking failed after {state['attempts']} attempt(s): {state.get('error_details')}")
        return state

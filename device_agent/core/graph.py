from langgraph.graph import END, StateGraph

from .errors import ErrorKind
from .types import TurnState


def after_capture(state: TurnState) -> str:
    if state.get("error_kind") is ErrorKind.PERMISSION_REVOKED:
        return "finalize_turn"
    return "infer"


def after_infer(state: TurnState) -> str:
    if state.get("cancelled") or state.get("error_kind") is not None:
        return "finalize_turn"
    return "parse_plan"


def after_parse(state: TurnState) -> str:
    if state.get("cancelled"):
        return "finalize_turn"
    return "execute_plan"


def build_graph(turn):
    """Wire one turn: capture -> infer -> parse -> execute -> finalize.

    ``turn`` supplies the node callables; each takes the ``TurnState`` and
    returns the keys it updates.
    """
    graph = StateGraph(TurnState)
    graph.add_node("capture_screen", turn.capture_screen)
    graph.add_node("infer", turn.infer)
    graph.add_node("parse_plan", turn.parse_plan)
    graph.add_node("execute_plan", turn.execute_plan)
    graph.add_node("finalize_turn", turn.finalize_turn)

    graph.set_entry_point("capture_screen")
    graph.add_conditional_edges(
        "capture_screen",
        after_capture,
        {"infer": "infer", "finalize_turn": "finalize_turn"},
    )
    graph.add_conditional_edges(
        "infer",
        after_infer,
        {"parse_plan": "parse_plan", "finalize_turn": "finalize_turn"},
    )
    graph.add_conditional_edges(
        "parse_plan",
        after_parse,
        {"execute_plan": "execute_plan", "finalize_turn": "finalize_turn"},
    )
    graph.add_edge("execute_plan", "finalize_turn")
    graph.add_edge("finalize_turn", END)

    return graph.compile()

from typing import List, Any
from dominate import tags

def render_table_block(headers: List[str], rows: List[List[Any]]):
    """Header row plus one row per item; cells that are already dominate nodes are inserted as-is."""
    container = tags.div(_class="table-container")

    with container:
        t = tags.table(_class="report-table")
        with t:
            with tags.thead():
                with tags.tr():
                    for h in headers:
                        tags.th(str(h))

            with tags.tbody():
                for r in rows or []:
                    cells = r if isinstance(r, (list, tuple)) else [r]
                    with tags.tr():
                        for c in cells:
                            if hasattr(c, "__html__") or hasattr(c, "render"):
                                tags.td(c)
                            else:
                                tags.td(str(c))
    return container

def badge(text: str, kind: str) -> tags.span:
    return tags.span(text, cls=f"badge badge-{kind}")

def state_badge(state: str) -> tags.span:
    kind = {"MATCH": "ok", "WARN": "neutral", "SUSPICIOUS": "bad"}.get(state, "neutral")
    return badge(state, kind)

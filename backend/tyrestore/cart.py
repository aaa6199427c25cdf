from typing import Any, Dict, List, Tuple


def reconcile_cart(items: List[Dict[str, Any]], catalog: Dict[str, Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[str], float]:
    """Clamp a client cart to current stock and prices.

    ``items`` are ``{"id", "quantity"}`` dicts; ``catalog`` maps tyre id to the
    tyre dict. Returns (kept items, removed ids, subtotal). Tyres that no
    longer exist are removed; quantities are clamped to ``[1, stock]`` and
    out-of-stock lines are kept but flagged and excluded from the subtotal.
    """
    kept: List[Dict[str, Any]] = []
    removed: List[str] = []
    merged: Dict[str, int] = {}
    order: List[str] = []
    for it in items:
        tid = str(it.get("id") or "")
        if not tid:
            continue
        try:
            qty = int(it.get("quantity") or 1)
        except (TypeError, ValueError):
            qty = 1
        if tid not in merged:
            order.append(tid)
            merged[tid] = 0
        merged[tid] += max(qty, 1)

    subtotal = 0.0
    for tid in order:
        tyre = catalog.get(tid)
        if not tyre:
            removed.append(tid)
            continue
        stock = int(tyre.get("stock") or 0)
        requested = merged[tid]
        qty = min(requested, stock) if stock > 0 else 0
        in_stock = qty > 0
        line_total = float(tyre.get("price") or 0) * qty
        subtotal += line_total
        kept.append({
            "id": tid,
            "tyre": tyre,
            "quantity": qty if in_stock else 1,
            "requested": requested,
            "stock": stock,
            "inStock": in_stock,
            "adjusted": qty != requested,
            "lineTotal": line_total,
        })
    return kept, removed, subtotal

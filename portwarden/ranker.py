SUBSTRING_BASE = 100.0
SUBSTRING_BONUS = 50.0
SUBSEQUENCE_STEP = 10.0
PORT_WEIGHT = 2


def score_text(query, target):
    """
    Score `target` against `query`, case-insensitive.

    A contiguous match scores 100 plus up to 50 for how much of the target
    it covers. Otherwise the query characters must appear in order: 10 per
    character, 0 when any of them is missing.
    """
    q = query.lower()
    t = str(target).lower()
    if not q or not t:
        return 0.0
    if q in t:
        return SUBSTRING_BASE + (len(q) / len(t)) * SUBSTRING_BONUS

    qi = 0
    for ch in t:
        if ch == q[qi]:
            qi += 1
            if qi == len(q):
                break
    if qi < len(q):
        return 0.0
    return qi * SUBSEQUENCE_STEP


def score(query, entry):
    q = query.strip()
    if not q:
        return 0.0
    return max(
        score_text(q, str(entry.port)) * PORT_WEIGHT,
        score_text(q, entry.process_name),
        score_text(q, str(entry.pid)),
    )


def rank_scored(query, entries):
    """Return [(entry, score)] best first; ties keep snapshot order."""
    q = (query or "").strip()
    if not q:
        return [(e, 0.0) for e in entries]
    scored = [(e, score(q, e)) for e in entries]
    scored = [pair for pair in scored if pair[1] > 0]
    # sort() is stable, so equal scores stay in snapshot order
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored


def rank(query, entries):
    return [e for e, _ in rank_scored(query, entries)]

"""
Legal entity advisor core.

Probabilistic multi-hypothesis reasoning over the nine entity categories,
driven by a bounded think-act-observe-reflect loop with guarded LLM access.
"""

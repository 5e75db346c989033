"""quickedit - AI-assisted inline editing for SiYuan block documents.

Select text spanning one or more blocks, describe the change, watch the
replacement stream in, then accept, reject, retry or insert it.

Example:
    >>> from quickedit.orchestration import EditOrchestrator
    >>> orchestrator = EditOrchestrator(store=store, generation=llm_client, tree=tree)
    >>> session_id = await orchestrator.trigger_edit(selection, "Make it formal")
    >>> await orchestrator.wait_for_review(session_id)
    >>> await orchestrator.accept(session_id)
"""

__version__ = "0.1.0"

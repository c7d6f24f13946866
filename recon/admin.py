# recon/admin.py
from __future__ import annotations

import logging
from typing import Any

from recon import repository as repo
from recon.db import Store
from recon.exceptions import PreconditionError
from recon.notify import PRETEXT_STATUS_UPDATED, TARGET_DELETED, Notifier
from recon.status import pretext_status

log = logging.getLogger(__name__)


def delete_target(store: Store, notifier: Notifier, email: str) -> dict[str, Any]:
    """
    Remove a target with its map rows and pretexts in one transaction.
    SourceData rows stay; other targets may still reference them.
    """
    target = repo.get_target(store, email)
    if target is None:
        raise PreconditionError(f"Target not found: {email}")

    with store.transaction():
        store.run("DELETE FROM TargetSourceMap WHERE target_email = ?", (email,))
        store.run("DELETE FROM Pretext WHERE target_email = ?", (email,))
        store.run("DELETE FROM Target WHERE email = ?", (email,))

    log.info("Deleted target %s", email)
    notifier.emit(TARGET_DELETED, {"email": email, "domain": target["domain_name"]})
    return {"success": True, "message": f"Target {email} has been deleted"}


def set_pretext_status(
    store: Store, notifier: Notifier, pretext_id: int, status: str
) -> dict[str, Any]:
    """Reviewer action; any of draft/approved/rejected may follow any other."""
    try:
        new = pretext_status(status)
    except ValueError as exc:
        raise ValueError("Invalid status. Must be one of: draft, approved, rejected") from exc
    if repo.get_pretext(store, pretext_id) is None:
        raise PreconditionError(f"Pretext not found: {pretext_id}")

    store.run("UPDATE Pretext SET status = ? WHERE id = ?", (new.value, pretext_id))
    notifier.emit(PRETEXT_STATUS_UPDATED, {"id": int(pretext_id), "status": new.value})
    return {"success": True, "id": int(pretext_id), "status": new.value}


__all__ = ["delete_target", "set_pretext_status"]

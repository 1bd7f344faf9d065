"""
Uploading the current turn's pending files to ledger entities.

Files are addressed by 1-based index, matching the "File 1", "File 2"
labels shown to the model. Without an index every pending file goes to
the entity.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .ledger_client import LedgerClient
from .models import PendingFile
from .step_trace import FILE_UPLOADED, UploadAssignment
from .tools import ToolKind, ToolSpec, failure, integer, params

logger = logging.getLogger(__name__)

ENTITY_ATTACHMENT_PATHS: Dict[str, str] = {
    "purchase": "/purchases/{id}/attachments",
    "sale": "/sales/{id}/attachments",
    "invoice": "/invoices/{id}/attachments",
    "journal_entry": "/journalEntries/{id}/attachments",
}

# Purchases must be attached to the sale side or the payment side
ATTACHMENT_FIELDS: Dict[str, Dict[str, str]] = {
    "purchase": {"attachToSale": "true"},
}


async def upload_files(
    client: LedgerClient,
    entity_type: str,
    entity_id: Any,
    files: Sequence[PendingFile],
) -> Dict[str, Any]:
    """Upload ``files`` one by one; per-file errors are collected, not raised."""
    path = ENTITY_ATTACHMENT_PATHS[entity_type].format(id=entity_id)
    fields = ATTACHMENT_FIELDS.get(entity_type)
    uploaded: List[Dict[str, Any]] = []
    errors: List[str] = []

    for file in files:
        try:
            result = await client.upload_attachment(path, file, fields)
        except Exception as e:
            logger.error(f"Upload of {file.name} to {entity_type} {entity_id} failed: {e}")
            errors.append(f"{file.name}: {e}")
            continue
        uploaded.append({
            "name": file.name,
            "identifier": result.get("identifier"),
            "downloadUrl": result.get("downloadUrl"),
        })

    if not uploaded:
        return failure(f"No files could be uploaded: {'; '.join(errors)}")

    result = {
        "success": True,
        FILE_UPLOADED: True,
        "filesUploaded": len(uploaded),
        "uploadedFiles": uploaded,
        "message": f"{len(uploaded)} of {len(files)} file(s) uploaded to {entity_type} {entity_id}",
    }
    if errors:
        result["errors"] = errors
    return result


def upload_tool(
    client: LedgerClient,
    pending_files: Sequence[PendingFile],
    name: str,
    entity_type: str,
    id_param: str,
) -> ToolSpec:
    """An UPLOAD tool that attaches pending files to one ``entity_type``."""
    label = entity_type.replace("_", " ")

    async def handler(fileIndex: Optional[int] = None, **kwargs) -> Dict[str, Any]:
        if not pending_files:
            return failure("No files attached. The user must send the file(s) with the message.")

        selected: Sequence[PendingFile] = pending_files
        if fileIndex is not None:
            if not 1 <= fileIndex <= len(pending_files):
                return failure(f"Invalid fileIndex {fileIndex}, must be between 1 and {len(pending_files)}.")
            selected = [pending_files[fileIndex - 1]]

        result = await upload_files(client, entity_type, kwargs[id_param], selected)
        if fileIndex is not None and result.get("success"):
            result["fileIndex"] = fileIndex
        result["totalFiles"] = len(pending_files)
        return result

    return ToolSpec(
        name=name,
        description=(
            f"Upload the attached file(s) to a {label}. Only usable when the user sent files "
            f"with the message. With several files, pass fileIndex to upload one specific file "
            f"to the matching {label}."
        ),
        parameters=params(
            {
                id_param: integer(f"{label} id"),
                "fileIndex": integer("1-based file number (File 1, File 2, ...). Omit to upload all files."),
            },
            required=[id_param],
        ),
        handler=handler,
        kind=ToolKind.UPLOAD,
    )


async def apply_upload_plan(
    client: LedgerClient,
    plan: Sequence[UploadAssignment],
    files: Sequence[PendingFile],
) -> List[Dict[str, Any]]:
    """Perform each planned upload; returns one report per assignment."""
    reports = []
    for assignment in plan:
        entity = assignment.entity
        if entity.entity_type not in ENTITY_ATTACHMENT_PATHS:
            logger.warning(f"No attachment endpoint for {entity.entity_type}, skipping")
            continue
        file = files[assignment.file_index - 1]
        result = await upload_files(client, entity.entity_type, entity.entity_id, [file])
        logger.info(f"Planned upload: file {assignment.file_index} -> "
                    f"{entity.entity_type} {entity.entity_id} ({'ok' if result.get('success') else 'failed'})")
        reports.append({
            "entityType": entity.entity_type,
            "entityId": entity.entity_id,
            "fileIndex": assignment.file_index,
            "fileName": file.name,
            "success": bool(result.get("success")),
            "error": result.get("error"),
        })
    return reports

from __future__ import annotations

from typing import TYPE_CHECKING

from treasury.schemas import DepartmentSummary, AreaSummary, HistoryEntryOut, MovementOut, UserSummary

if TYPE_CHECKING:
    from treasury.models import Movement, MovementApproval


def project_movement(movement: "Movement") -> MovementOut:
    """
    Project a Movement row (with its area/department, when loaded) into the API view.

    ``needs_categorization`` is derived: a movement without department still
    has to be categorized before it can be finalized.
    """
    return MovementOut(
        id=movement.id,
        area_id=movement.area_id,
        department_id=movement.department_id,
        user_id=movement.user_id,
        type=movement.type,
        status=movement.status,
        amount=movement.amount,
        currency=movement.currency,
        description=movement.description,
        category=movement.category,
        reference=movement.reference,
        transaction_date=movement.transaction_date,
        source_bank_account_id=movement.source_bank_account_id,
        destination_bank_account_id=movement.destination_bank_account_id,
        is_internal_transfer=movement.is_internal_transfer,
        parent_id=movement.parent_id,
        is_split_parent=movement.is_split_parent,
        import_job_id=movement.import_job_id,
        approved_by_user_id=movement.approved_by_user_id,
        approved_at=movement.approved_at,
        rejected_by_user_id=movement.rejected_by_user_id,
        rejected_at=movement.rejected_at,
        rejection_reason=movement.rejection_reason,
        needs_categorization=movement.needs_categorization,
        created_at=movement.created_at,
        updated_at=movement.updated_at,
        area=AreaSummary.model_validate(movement.area) if movement.area else None,
        department=DepartmentSummary.model_validate(movement.department) if movement.department else None,
    )


def project_history_entry(entry: "MovementApproval") -> HistoryEntryOut:
    return HistoryEntryOut(
        id=entry.id,
        movement_id=entry.movement_id,
        action=entry.action,
        comment=entry.comment,
        metadata=entry.change_metadata,
        created_at=entry.created_at,
        user=UserSummary.model_validate(entry.user) if entry.user else None,
    )

"""
Alert Service - defect-rate thresholds and the alerts raised against them

A build that reports defects is compared with the applicable threshold:
the active SKU-specific row if one exists, otherwise the active
company-wide row (sku_id NULL). Exceeding the limit records a DefectAlert.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from buildledger.core.config import settings
from buildledger.core.decimal_utils import ZERO, to_decimal
from buildledger.exceptions import DuplicateError, NotFoundError, ValidationError
from buildledger.logging_config import get_logger
from buildledger.models.quality import DefectAlert, DefectThreshold
from buildledger.services.inventory_service import get_sku

logger = get_logger(__name__)

SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"


def calculate_defect_rate(defect_count: int, units_built: int) -> Decimal:
    """Defects as a percentage of units built, 2 places."""
    if not units_built:
        return ZERO
    return (Decimal(defect_count) / Decimal(units_built) * 100).quantize(Decimal("0.01"))


def get_applicable_threshold(db: Session, company_id: int, sku_id: int) -> Optional[DefectThreshold]:
    base = db.query(DefectThreshold).filter(
        DefectThreshold.company_id == company_id,
        DefectThreshold.is_active.is_(True),
    )
    threshold = base.filter(DefectThreshold.sku_id == sku_id).first()
    if threshold is None:
        threshold = base.filter(DefectThreshold.sku_id.is_(None)).first()
    return threshold


def evaluate_defect_threshold(
    db: Session,
    *,
    company_id: int,
    entry_id: int,
    sku_id: int,
    defect_rate: Decimal,
    critical_threshold: Optional[Decimal] = None,
) -> Optional[DefectAlert]:
    """
    Record a DefectAlert when defect_rate exceeds the applicable limit.

    Severity is critical at or above critical_threshold (default from
    settings), warning otherwise. Returns None when alerts are disabled,
    no threshold applies, or the rate is within the limit.
    Does NOT commit.
    """
    if not settings.ENABLE_DEFECT_ALERTS:
        return None

    threshold = get_applicable_threshold(db, company_id, sku_id)
    if threshold is None:
        return None

    defect_rate = to_decimal(defect_rate)
    limit = to_decimal(threshold.defect_rate_limit)
    if defect_rate <= limit:
        return None

    if critical_threshold is None:
        critical_threshold = settings.defect_rate_critical_threshold
    severity = SEVERITY_CRITICAL if defect_rate >= critical_threshold else SEVERITY_WARNING

    alert = DefectAlert(
        threshold_id=threshold.id,
        entry_id=entry_id,
        sku_id=sku_id,
        defect_rate=defect_rate,
        threshold_value=limit,
        severity=severity,
    )
    db.add(alert)
    db.flush()
    logger.warning(
        f"Defect alert ({severity}) for SKU {sku_id}: rate {defect_rate}% exceeds {limit}% "
        f"(entry {entry_id})"
    )
    return alert


# ============================================================================
# Threshold management
# ============================================================================

def create_threshold(
    db: Session,
    company_id: int,
    defect_rate_limit: Decimal,
    sku_id: Optional[int] = None,
    affected_rate_limit: Optional[Decimal] = None,
    created_by_id: Optional[int] = None,
) -> DefectThreshold:
    defect_rate_limit = to_decimal(defect_rate_limit)
    if defect_rate_limit < 0 or defect_rate_limit > 100:
        raise ValidationError(
            "defect_rate_limit must be between 0 and 100",
            field="defect_rate_limit",
            value=defect_rate_limit,
        )
    if sku_id is not None:
        get_sku(db, sku_id, company_id)

    existing = db.query(DefectThreshold.id).filter(
        DefectThreshold.company_id == company_id,
        DefectThreshold.sku_id == sku_id if sku_id is not None else DefectThreshold.sku_id.is_(None),
    ).first()
    if existing:
        raise DuplicateError("Defect threshold", field="sku_id", value=sku_id if sku_id is not None else "global")

    threshold = DefectThreshold(
        company_id=company_id,
        sku_id=sku_id,
        defect_rate_limit=defect_rate_limit,
        affected_rate_limit=to_decimal(affected_rate_limit) if affected_rate_limit is not None else None,
        created_by_id=created_by_id,
    )
    db.add(threshold)
    db.flush()
    return threshold


def get_defect_thresholds(db: Session, company_id: int) -> List[DefectThreshold]:
    """Company-wide threshold first, then per-SKU ones."""
    return db.query(DefectThreshold).filter(
        DefectThreshold.company_id == company_id,
    ).order_by(
        DefectThreshold.sku_id.isnot(None),
        DefectThreshold.sku_id.asc(),
    ).all()


def deactivate_threshold(db: Session, threshold_id: int, company_id: int) -> DefectThreshold:
    threshold = db.query(DefectThreshold).filter(
        DefectThreshold.id == threshold_id,
        DefectThreshold.company_id == company_id,
    ).first()
    if not threshold:
        raise NotFoundError("Defect threshold", threshold_id)
    threshold.is_active = False
    db.flush()
    return threshold


# ============================================================================
# Alerts
# ============================================================================

def get_defect_alerts(
    db: Session,
    company_id: int,
    sku_id: Optional[int] = None,
    acknowledged: Optional[bool] = None,
    severity: Optional[str] = None,
    limit: int = 50,
) -> List[DefectAlert]:
    """Newest alerts first, tenant-filtered through their threshold."""
    query = db.query(DefectAlert).join(
        DefectThreshold, DefectThreshold.id == DefectAlert.threshold_id,
    ).filter(DefectThreshold.company_id == company_id)

    if sku_id is not None:
        query = query.filter(DefectAlert.sku_id == sku_id)
    if acknowledged is True:
        query = query.filter(DefectAlert.acknowledged_at.isnot(None))
    elif acknowledged is False:
        query = query.filter(DefectAlert.acknowledged_at.is_(None))
    if severity:
        query = query.filter(DefectAlert.severity == severity)

    return query.order_by(DefectAlert.created_at.desc(), DefectAlert.id.desc()).limit(limit).all()


def acknowledge_alerts(
    db: Session,
    alert_ids: Sequence[int],
    company_id: int,
    acknowledged_by_id: Optional[int] = None,
) -> int:
    """Mark unacknowledged alerts of the company as seen; returns how many changed."""
    if not alert_ids:
        return 0

    owned_ids = [
        row.id for row in db.query(DefectAlert.id).join(
            DefectThreshold, DefectThreshold.id == DefectAlert.threshold_id,
        ).filter(
            DefectAlert.id.in_(list(alert_ids)),
            DefectThreshold.company_id == company_id,
            DefectAlert.acknowledged_at.is_(None),
        ).all()
    ]
    if not owned_ids:
        return 0

    updated = db.query(DefectAlert).filter(DefectAlert.id.in_(owned_ids)).update(
        {
            DefectAlert.acknowledged_at: datetime.utcnow(),
            DefectAlert.acknowledged_by_id: acknowledged_by_id,
        },
        synchronize_session="fetch",
    )
    logger.info(f"Acknowledged {updated} defect alert(s) for company {company_id}")
    return updated

from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
from enum import Enum

from okrhub.datetime_utils import format_datetime_utc
from okrhub.utils import camelize

db = SQLAlchemy()


class EntitySyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    RESUBMITTED = "resubmitted"  # replaced by a fresh record, see resubmitted_as
    SUPERSEDED = "superseded"  # a newer record for the same entity carries its change


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"


# ==============================================================================
# SYNC INFRASTRUCTURE
# ==============================================================================

class SyncQueueItem(db.Model):
    """
    Outbox record. One row is appended per create/update/delete of a local
    entity; rows are only mutated by the drain loop.
    """
    __tablename__ = "sync_queue"

    id = db.Column(db.Integer, primary_key=True)
    entity_kind = db.Column(db.String(32), nullable=False)  # objective, keyResult, ...
    external_id = db.Column(db.String(128), nullable=False, index=True)
    payload = db.Column(db.Text, nullable=False)  # exact JSON body that gets signed
    status = db.Column(db.String(16), nullable=False, default=OutboxStatus.PENDING.value, index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_attempt_at = db.Column(db.DateTime, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    resubmitted_as = db.Column(db.Integer, nullable=True)  # id of the record that replaced this one
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index("idx_sync_queue_kind_status", "entity_kind", "status"),
        db.Index("idx_sync_queue_status_created", "status", "created_at", "id"),
    )

    def __repr__(self):
        return f"<SyncQueueItem {self.id} - {self.entity_kind}:{self.external_id} - {self.status}>"

    def to_dict(self):
        return {
            'id': self.id,
            'entityKind': self.entity_kind,
            'externalId': self.external_id,
            'payload': self.payload,
            'status': self.status,
            'attempts': self.attempts,
            'lastAttemptAt': format_datetime_utc(self.last_attempt_at),
            'errorMessage': self.error_message,
            'resubmittedAs': self.resubmitted_as,
            'createdAt': format_datetime_utc(self.created_at),
        }


class SyncLogEntry(db.Model):
    """Append-only audit trail of confirmed deliveries."""
    __tablename__ = "sync_log"

    id = db.Column(db.Integer, primary_key=True)
    entity_kind = db.Column(db.String(32), nullable=False, index=True)
    external_id = db.Column(db.String(128), nullable=False, index=True)
    remote_id = db.Column(db.String(128), nullable=True)  # id assigned by LinkHub
    synced_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    action = db.Column(db.String(16), nullable=False, default=SyncAction.CREATE.value)

    def __repr__(self):
        return f"<SyncLogEntry {self.entity_kind}:{self.external_id} - {self.action}>"

    def to_dict(self):
        return {
            'id': self.id,
            'entityKind': self.entity_kind,
            'externalId': self.external_id,
            'remoteId': self.remote_id,
            'syncedAt': format_datetime_utc(self.synced_at),
            'action': self.action,
        }


class SyncConfig(db.Model):
    """Singleton record holding the LinkHub connection details."""
    __tablename__ = "okrhub_config"

    id = db.Column(db.Integer, primary_key=True)
    endpoint_url = db.Column(db.String(512), nullable=False)
    api_key_prefix = db.Column(db.String(64), nullable=False)
    signing_secret = db.Column(db.Text, nullable=False)
    auto_sync_enabled = db.Column(db.Boolean, nullable=False, default=True)
    sync_interval_ms = db.Column(db.Integer, nullable=False, default=60000)
    source_app = db.Column(db.String(32), nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @classmethod
    def get_current(cls):
        return cls.query.order_by(cls.id.asc()).first()

    def __repr__(self):
        return f"<SyncConfig {self.endpoint_url} - {self.api_key_prefix}>"


# ==============================================================================
# LOCAL OKR TABLES
# ==============================================================================

class SyncedEntityMixin:
    """Columns shared by every locally stored OKR entity."""
    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.String(128), unique=True, nullable=False, index=True)
    source_app = db.Column(db.String(32), nullable=False)
    source_url = db.Column(db.String(512), nullable=True)
    slug = db.Column(db.String(64), nullable=True)
    # "metadata" is reserved on declarative models
    meta = db.Column("metadata", db.JSON, nullable=True)
    sync_status = db.Column(db.String(16), nullable=False, default=EntitySyncStatus.PENDING.value, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)

    _bookkeeping = ("id", "meta", "created_at", "updated_at", "deleted_at")

    def to_dict(self):
        data = {}
        for attr in self.__mapper__.column_attrs:
            if attr.key in self._bookkeeping:
                continue
            data[camelize(attr.key)] = getattr(self, attr.key)
        data['localId'] = self.id
        data['metadata'] = self.meta
        data['createdAt'] = format_datetime_utc(self.created_at)
        data['updatedAt'] = format_datetime_utc(self.updated_at)
        data['deletedAt'] = format_datetime_utc(self.deleted_at)
        return data

    def __repr__(self):
        return f"<{type(self).__name__} {self.external_id} - {self.sync_status}>"


class Objective(SyncedEntityMixin, db.Model):
    __tablename__ = "objectives"

    title = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text, nullable=False)
    team_external_id = db.Column(db.String(128), nullable=False, index=True)


class KeyResult(SyncedEntityMixin, db.Model):
    __tablename__ = "key_results"

    objective_external_id = db.Column(db.String(128), nullable=False, index=True)
    indicator_external_id = db.Column(db.String(128), nullable=False, index=True)
    team_external_id = db.Column(db.String(128), nullable=False, index=True)
    # weight/impact are owned by LinkHub; kept locally but never sent
    weight = db.Column(db.Float, nullable=True)
    impact = db.Column(db.Float, nullable=True)
    forecast_value = db.Column(db.Float, nullable=True)
    target_value = db.Column(db.Float, nullable=True)


class Risk(SyncedEntityMixin, db.Model):
    __tablename__ = "risks"

    description = db.Column(db.Text, nullable=False)
    team_external_id = db.Column(db.String(128), nullable=False, index=True)
    key_result_external_id = db.Column(db.String(128), nullable=False, index=True)
    priority = db.Column(db.String(16), nullable=False)  # lowest..highest
    indicator_external_id = db.Column(db.String(128), nullable=True, index=True)
    trigger_value = db.Column(db.Float, nullable=True)
    triggered_if_lower = db.Column(db.Boolean, nullable=True)
    use_forecast_as_trigger = db.Column(db.Boolean, nullable=True)
    is_red = db.Column(db.Boolean, nullable=True)


class Initiative(SyncedEntityMixin, db.Model):
    __tablename__ = "initiatives"

    description = db.Column(db.Text, nullable=False)
    team_external_id = db.Column(db.String(128), nullable=False, index=True)
    risk_external_id = db.Column(db.String(128), nullable=True, index=True)
    assignee_external_id = db.Column(db.String(128), nullable=False, index=True)
    created_by_external_id = db.Column(db.String(128), nullable=False)
    status = db.Column(db.String(16), nullable=False)  # ON_TIME, OVERDUE, FINISHED
    priority = db.Column(db.String(16), nullable=False)
    finished_at = db.Column(db.BigInteger, nullable=True)  # epoch ms
    external_url = db.Column(db.String(512), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    # Set by LinkHub from priority
    is_new = db.Column(db.Boolean, nullable=True)


class Indicator(SyncedEntityMixin, db.Model):
    __tablename__ = "indicators"

    company_external_id = db.Column(db.String(128), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)
    symbol = db.Column(db.String(32), nullable=False)
    periodicity = db.Column(db.String(16), nullable=False)  # weekly..yearly
    assignee_external_id = db.Column(db.String(128), nullable=True)
    is_reverse = db.Column(db.Boolean, nullable=True)
    type = db.Column(db.String(16), nullable=True)  # OUTPUT / OUTCOME
    notes = db.Column(db.Text, nullable=True)
    automation_url = db.Column(db.String(512), nullable=True)
    automation_description = db.Column(db.Text, nullable=True)
    forecast_date = db.Column(db.BigInteger, nullable=True)


class IndicatorValue(SyncedEntityMixin, db.Model):
    __tablename__ = "indicator_values"

    indicator_external_id = db.Column(db.String(128), nullable=False, index=True)
    value = db.Column(db.Float, nullable=False)
    date = db.Column(db.BigInteger, nullable=False)  # epoch ms


class IndicatorForecast(SyncedEntityMixin, db.Model):
    __tablename__ = "indicator_forecasts"

    indicator_external_id = db.Column(db.String(128), nullable=False, index=True)
    value = db.Column(db.Float, nullable=False)
    date = db.Column(db.BigInteger, nullable=False)


class Milestone(SyncedEntityMixin, db.Model):
    __tablename__ = "milestones"

    indicator_external_id = db.Column(db.String(128), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)
    value = db.Column(db.Float, nullable=False)
    forecast_date = db.Column(db.BigInteger, nullable=True)
    status = db.Column(db.String(20), nullable=True)  # ON_TIME, OVERDUE, ACHIEVED_*
    achieved_at = db.Column(db.BigInteger, nullable=True)

"""Per-tenant sync configuration model"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from app.models.base import Base


class SyncConfig(Base):
    """Credentials, bindings and mapping rules for one tenant"""

    __tablename__ = "sync_configs"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, unique=True, nullable=False, index=True)

    # Notion (source)
    notion_token = Column(Text, nullable=True)
    notion_database_ids = Column(JSON, default=list)

    # Azure DevOps (target): auth_type is "pat" or "oauth"
    ado_auth_type = Column(String, default="pat", nullable=False)
    ado_pat = Column(Text, nullable=True)
    ado_org_url = Column(String, nullable=True)
    ado_project = Column(String, nullable=True)
    ado_oauth_access_token = Column(Text, nullable=True)
    ado_oauth_refresh_token = Column(Text, nullable=True)
    ado_oauth_expires_at = Column(DateTime, nullable=True)  # naive UTC

    # Work item classification
    target_work_item_type = Column(String, default="Product Backlog Item")
    target_child_work_item_type = Column(String, default="Task")
    target_initial_state = Column(String, default="New")
    target_area_path = Column(String, nullable=True)
    target_work_type = Column(String, nullable=True)
    target_work_type_field = Column(String, nullable=True)

    # Mapping rules
    status_mapping = Column(JSON, default=dict)
    reverse_status_mapping = Column(JSON, default=dict)
    assignee_mapping = Column(JSON, default=dict)
    reverse_assignee_mapping = Column(JSON, default=dict)
    default_target_state = Column(String, default="New")
    default_source_status = Column(String, default="Not started")

    # Notion property bindings
    source_status_property = Column(String, default="Status")
    source_assignee_property = Column(String, default="Assignee")
    source_description_property = Column(String, default="Description")
    source_target_id_property = Column(String, default="ADO ID")
    source_target_url_property = Column(String, default="PBI")
    source_subtask_property = Column(String, nullable=True)

    # Scheduling
    sync_direction = Column(String, default="both")
    schedule_enabled = Column(Boolean, default=False)
    sync_interval_minutes = Column(Integer, nullable=True)
    # "interval" uses sync_interval_minutes; "hourly" and "daily" are UTC wall-clock times
    schedule_type = Column(String, default="interval")
    schedule_hour = Column(Integer, default=8)
    schedule_minute = Column(Integer, default=0)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SyncConfig(tenant_id='{self.tenant_id}', auth_type={self.ado_auth_type})>"

# backend/models.py
import json
import uuid

from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from db import Base


def uuid4str():
    return str(uuid.uuid4())


class ContractTemplate(Base):
    __tablename__ = "contract_templates"
    id = Column(String, primary_key=True, default=uuid4str)
    name = Column(String)
    source_filename = Column(String, nullable=True)
    content = Column(Text, default="")  # canonical doc tree, ids assigned (JSON)


class Contract(Base):
    __tablename__ = "contracts"
    id = Column(String, primary_key=True, default=uuid4str)
    template_id = Column(String, ForeignKey("contract_templates.id"), index=True)
    status = Column(String, default="draft")  # draft|signed

    client_name = Column(String, default="")
    client_phone = Column(String, default="")
    client_email = Column(String, default="")
    contact_name = Column(String, default="")
    contact_phone = Column(String, default="")
    contact_email = Column(String, default="")

    custom_pricing = Column(Text, default="{}")  # PricingState.to_dict() (JSON)
    client_inputs = Column(Text, default="{}")   # field id -> value (JSON)
    signed_content = Column(Text, nullable=True)  # frozen render result (JSON)
    signed_at = Column(DateTime, nullable=True)

    template = relationship("ContractTemplate")

    def client_record(self) -> dict:
        return {"name": self.client_name, "phone": self.client_phone, "email": self.client_email}

    def contact_record(self) -> dict:
        return {"contact_name": self.contact_name, "contact_phone": self.contact_phone,
                "contact_email": self.contact_email}

    def pricing_dict(self) -> dict:
        return _loads(self.custom_pricing)

    def inputs_dict(self) -> dict:
        return _loads(self.client_inputs)


def _loads(text) -> dict:
    try:
        data = json.loads(text or "{}")
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}

# backend/app.py
import io
import json
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, UploadFile, File, HTTPException, Form, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import LOG_LEVEL
from db import Base, engine, SessionLocal
from models import ContractTemplate, Contract
from content_normalizer import docx_to_doc
from pipeline import prepare_template, render_contract
from placeholder_engine import PLACEHOLDER_CATALOG, find_fields
from pricing import (
    PricingError, PricingState, new_pricing_state, apply_pricing_change, derive_payment_plan,
    update_payment_row, add_payment_row, delete_payment_row, plan_percent_warning,
)
from render_service import doc_to_html
from resolver import Mode

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Contract Templating & Pricing API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)

TEMPLATE_EXTENSIONS = (".docx", ".html", ".htm", ".json")


def db_sess():
    db = SessionLocal()
    try: yield db
    finally: db.close()


# ---------- helpers ----------
def get_template(db: Session, template_id: str) -> ContractTemplate:
    tpl = db.get(ContractTemplate, template_id)
    if not tpl: raise HTTPException(404, "Template not found")
    return tpl


def get_contract(db: Session, contract_id: str) -> Contract:
    contract = db.get(Contract, contract_id)
    if not contract: raise HTTPException(404, "Contract not found")
    return contract


def ensure_editable(contract: Contract):
    if contract.status == "signed":
        raise HTTPException(409, "Contract is signed and can no longer be changed")


def template_doc(tpl: ContractTemplate) -> dict:
    return json.loads(tpl.content or "{}")


def load_pricing(contract: Contract) -> PricingState:
    return PricingState.from_dict(contract.pricing_dict())


def pricing_response(state: PricingState) -> dict:
    warning = plan_percent_warning(state.payment_plan)
    return {"pricing": state.to_dict(), "warnings": [warning] if warning else []}


def save_pricing(db: Session, contract: Contract, state: PricingState):
    contract.custom_pricing = json.dumps(state.to_dict(), ensure_ascii=False)
    db.commit()


def parse_json_form(raw: str, what: str):
    try:
        return json.loads(raw)
    except ValueError:
        raise HTTPException(400, f"{what} is not valid JSON")


def do_render(contract: Contract, mode: Mode, today=None):
    return render_contract(
        template_doc(contract.template),
        load_pricing(contract),
        client=contract.client_record(),
        contract=contract.contact_record(),
        client_inputs=contract.inputs_dict(),
        mode=mode,
        today=today,
    )


# ---------- routes ----------
@app.get("/api/placeholders/catalog")
def placeholder_catalog():
    return PLACEHOLDER_CATALOG


@app.post("/api/templates")
def create_template(name: str = Form(""), content: str = Form(None), file: UploadFile = File(None),
                    db: Session = Depends(db_sess)):
    warnings: list[str] = []
    filename = None
    if file is not None:
        filename = file.filename or ""
        if not filename.lower().endswith(TEMPLATE_EXTENSIONS):
            raise HTTPException(status_code=400, detail="Only .docx, .html, .htm or .json supported")
        data = file.file.read()
        if filename.lower().endswith(".docx"):
            raw = docx_to_doc(io.BytesIO(data), warnings)
        else:
            raw = data
    elif content is not None:
        raw = content
    else:
        raise HTTPException(400, "Provide template content or a file")

    doc = prepare_template(raw, warnings)
    tpl = ContractTemplate(name=name or filename or "Untitled template", source_filename=filename,
                           content=json.dumps(doc, ensure_ascii=False))
    db.add(tpl); db.commit()
    logger.info("[API] Stored template %s (%d warnings)", tpl.id, len(warnings))
    return {"template_id": tpl.id, "name": tpl.name, "fields": find_fields(doc), "warnings": warnings}


@app.get("/api/templates/{template_id}")
def read_template(template_id: str, db: Session = Depends(db_sess)):
    tpl = get_template(db, template_id)
    doc = template_doc(tpl)
    return {"template_id": tpl.id, "name": tpl.name, "content": doc, "fields": find_fields(doc)}


@app.post("/api/contracts")
def create_contract(template_id: str = Form(...),
                    client_name: str = Form(""), client_phone: str = Form(""), client_email: str = Form(""),
                    contact_name: str = Form(""), contact_phone: str = Form(""), contact_email: str = Form(""),
                    currency: str = Form(None), applicant_count: int = Form(1),
                    archival_research_fee: float = Form(0), discount_percentage: int = Form(0),
                    db: Session = Depends(db_sess)):
    get_template(db, template_id)
    try:
        state = new_pricing_state(currency=currency, applicant_count=applicant_count,
                                  archival_research_fee=archival_research_fee,
                                  discount_percentage=discount_percentage)
    except PricingError as e:
        raise HTTPException(400, str(e))
    contract = Contract(template_id=template_id,
                        client_name=client_name, client_phone=client_phone, client_email=client_email,
                        contact_name=contact_name, contact_phone=contact_phone, contact_email=contact_email,
                        custom_pricing=json.dumps(state.to_dict(), ensure_ascii=False),
                        client_inputs="{}")
    db.add(contract); db.commit()
    logger.info("[API] Created contract %s from template %s", contract.id, template_id)
    return {"contract_id": contract.id, **pricing_response(state)}


@app.get("/api/contracts/{contract_id}/pricing")
def read_pricing(contract_id: str, db: Session = Depends(db_sess)):
    contract = get_contract(db, contract_id)
    return pricing_response(derive_payment_plan(load_pricing(contract)))


@app.post("/api/contracts/{contract_id}/pricing")
def change_pricing(contract_id: str, changes_json: str = Form(...), db: Session = Depends(db_sess)):
    contract = get_contract(db, contract_id)
    ensure_editable(contract)
    changes = parse_json_form(changes_json, "changes_json")
    try:
        state = apply_pricing_change(load_pricing(contract), changes)
    except PricingError as e:
        raise HTTPException(400, str(e))
    save_pricing(db, contract, state)
    return pricing_response(state)


@app.post("/api/contracts/{contract_id}/payment-plan")
def edit_payment_plan(contract_id: str, action: str = Form(...), index: int = Form(None),
                      field: str = Form(None), value: str = Form(None), db: Session = Depends(db_sess)):
    contract = get_contract(db, contract_id)
    ensure_editable(contract)
    state = derive_payment_plan(load_pricing(contract))
    try:
        if action == "add":
            state = add_payment_row(state)
        elif action == "update":
            if index is None or not field:
                raise HTTPException(400, "update needs index and field")
            state = update_payment_row(state, index, field, value)
        elif action == "delete":
            if index is None:
                raise HTTPException(400, "delete needs index")
            state = delete_payment_row(state, index)
        else:
            raise HTTPException(400, f"Unknown action '{action}'")
    except PricingError as e:
        raise HTTPException(400, str(e))
    save_pricing(db, contract, state)
    return pricing_response(state)


@app.post("/api/contracts/{contract_id}/inputs")
def set_input(contract_id: str, field_id: str = Form(...), value: str = Form(""),
              db: Session = Depends(db_sess)):
    contract = get_contract(db, contract_id)
    ensure_editable(contract)
    known = {f["id"] for f in find_fields(template_doc(contract.template))}
    if field_id not in known: raise HTTPException(404, "Field not found")
    inputs = contract.inputs_dict()
    inputs[field_id] = value
    contract.client_inputs = json.dumps(inputs, ensure_ascii=False)
    db.commit()
    return {"ok": True, "client_inputs": inputs}


@app.get("/api/contracts/{contract_id}/render")
def render(contract_id: str, mode: str = "editing", format: str = "json", db: Session = Depends(db_sess)):
    contract = get_contract(db, contract_id)
    if format not in ("json", "html"):
        raise HTTPException(400, "format must be json or html")
    if contract.status == "signed" and contract.signed_content:
        result = json.loads(contract.signed_content)
    else:
        try:
            render_mode = Mode(mode)
        except ValueError:
            raise HTTPException(400, f"Unknown mode '{mode}'")
        result = do_render(contract, render_mode).to_dict()
    if format == "html":
        return JSONResponse({"html": doc_to_html(result["doc"]), "warnings": result["warnings"]})
    return result


@app.post("/api/contracts/{contract_id}/sign")
def sign(contract_id: str, db: Session = Depends(db_sess)):
    contract = get_contract(db, contract_id)
    ensure_editable(contract)
    signed_at = datetime.now(timezone.utc)
    result = do_render(contract, Mode.SIGNED, today=signed_at.date()).to_dict()
    contract.signed_content = json.dumps(result, ensure_ascii=False)
    contract.signed_at = signed_at
    contract.status = "signed"
    db.commit()
    logger.info("[API] Contract %s signed", contract.id)
    return {"ok": True, "signed_at": signed_at.isoformat(), **result}

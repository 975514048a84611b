from __future__ import annotations

import csv
import io
import logging
import re
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from repository.empresas_repo import find_or_create_empresa
from shared.db import BrevoSyncLog, Mandato

logger = logging.getLogger(__name__)

BREVO_DEAL_NAME_RE = re.compile(r"^(\d+)\s*-\s*(.+?)\s*-\s*Proceso de Venta$")

BREVO_IMPORT_SECTOR = "Industria"
VENTA_IMPORT_SECTOR = "Por clasificar"


def parse_csv_text(text: str) -> List[List[str]]:
    """Split CSV text into trimmed rows; quoted fields may contain commas."""
    rows = []
    for row in csv.reader(io.StringIO(text.lstrip("\ufeff"))):
        cleaned = [field.strip() for field in row]
        if not any(cleaned):
            continue
        rows.append(cleaned)
    return rows


def extract_empresa_from_nombre(nombre: str) -> Tuple[Optional[int], str]:
    """
    "65 - Fryel - Proceso de Venta" -> (65, "Fryel").
    Any other name is returned whole as the company name.
    """
    match = BREVO_DEAL_NAME_RE.match(nombre.strip())
    if match:
        return int(match.group(1)), match.group(2).strip()
    return None, nombre.strip()


def parse_brevo_date(value: Optional[str]) -> Optional[date]:
    """Brevo exports dates as dd-mm-yyyy."""
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), "%d-%m-%Y").date()
    except ValueError:
        return None


def _column(row: List[str], index: int) -> str:
    return row[index] if len(row) > index else ""


def import_brevo_deals_csv(db, text: str, today: Optional[date] = None) -> dict:
    """
    Import a Brevo deals export as sell-side mandates.

    Columns: deal id, name, created (dd-mm-yyyy), stage, three unused, owner.
    Deals already recorded in brevo_sync_log are skipped, so re-running the
    same file is harmless.
    """
    rows = parse_csv_text(text)[1:]
    results: List[Dict[str, Optional[str]]] = []

    for row in rows:
        brevo_id = _column(row, 0)
        nombre = _column(row, 1)
        creado_el = _column(row, 2)
        fase = _column(row, 3)
        propietario = _column(row, 7)

        if not nombre or not brevo_id:
            results.append({"nombre": nombre or "Sin nombre", "status": "skipped", "message": "Datos incompletos"})
            continue

        id_corto, empresa_nombre = extract_empresa_from_nombre(nombre)
        try:
            empresa, _ = find_or_create_empresa(
                db,
                empresa_nombre,
                sector=BREVO_IMPORT_SECTOR,
                notas=f"Importado desde Brevo - Deal ID: {brevo_id}",
            )

            existing = (
                db.query(BrevoSyncLog)
                .filter(BrevoSyncLog.entity_type == "deal", BrevoSyncLog.brevo_id == brevo_id)
                .first()
            )
            if existing:
                db.commit()
                results.append(
                    {"nombre": nombre, "status": "skipped", "message": "Ya existe en la base de datos", "brevoId": brevo_id}
                )
                continue

            mandato = Mandato(
                tipo="venta",
                estado="prospecto",
                empresa_principal_id=empresa.id,
                titulo=nombre,
                descripcion=f"Importado desde Brevo\nDeal ID: {brevo_id}\nFase: {fase}",
                fecha_inicio=parse_brevo_date(creado_el) or today or date.today(),
                id_corto=id_corto,
            )
            db.add(mandato)
            db.flush()
            db.add(
                BrevoSyncLog(
                    entity_type="deal",
                    entity_id=mandato.id,
                    brevo_id=brevo_id,
                    sync_type="import",
                    sync_status="synced",
                    sync_data={"fase": fase, "propietario": propietario or None},
                )
            )
            db.commit()
            suffix = f" (ID: {id_corto})" if id_corto is not None else ""
            results.append(
                {"nombre": nombre, "status": "success", "message": f"Mandato creado exitosamente{suffix}", "brevoId": brevo_id}
            )
        except Exception as exc:  # pylint: disable=broad-except
            db.rollback()
            logger.error("Brevo deal import failed for %s: %s", nombre, exc)
            results.append({"nombre": nombre, "status": "error", "message": str(exc) or "Error desconocido", "brevoId": brevo_id})

    summary = {
        "success": sum(1 for result in results if result["status"] == "success"),
        "skipped": sum(1 for result in results if result["status"] == "skipped"),
        "error": sum(1 for result in results if result["status"] == "error"),
    }
    logger.info("Brevo deals import: %s", summary)
    return {"results": results, "summary": summary}


def rows_from_mandatos_venta_csv(text: str) -> List[Dict[str, Optional[str]]]:
    """Rows of codigo, empresa, proyecto; the header row is optional."""
    rows = parse_csv_text(text)
    if rows and _column(rows[0], 0).lower() == "codigo":
        rows = rows[1:]
    return [
        {"codigo": _column(row, 0), "empresa": _column(row, 1), "proyecto": _column(row, 2) or None}
        for row in rows
    ]


def import_mandatos_venta(db, items: Iterable[Dict[str, Optional[str]]]) -> dict:
    results = {"empresasCreadas": 0, "mandatosCreados": 0, "errores": []}

    for item in items:
        codigo = (item.get("codigo") or "").strip()
        empresa_nombre = (item.get("empresa") or "").strip()
        if not codigo or not empresa_nombre:
            results["errores"].append(f"Fila incompleta: {codigo or empresa_nombre or 'sin datos'}")
            continue
        try:
            empresa, created = find_or_create_empresa(db, empresa_nombre, sector=VENTA_IMPORT_SECTOR)

            if db.query(Mandato.id).filter(Mandato.codigo == codigo).first():
                db.commit()
                results["empresasCreadas"] += int(created)
                results["errores"].append(f"Mandato {codigo} ya existe, omitido")
                continue

            db.add(
                Mandato(
                    codigo=codigo,
                    tipo="venta",
                    categoria="operacion_ma",
                    nombre_proyecto=item.get("proyecto") or None,
                    empresa_principal_id=empresa.id,
                    estado="activo",
                    pipeline_stage="prospeccion",
                )
            )
            db.commit()
            results["empresasCreadas"] += int(created)
            results["mandatosCreados"] += 1
        except Exception as exc:  # pylint: disable=broad-except
            db.rollback()
            logger.error("Mandato import failed for %s: %s", codigo, exc)
            results["errores"].append(f"Error procesando {codigo}: {exc}")

    return results

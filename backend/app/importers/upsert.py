"""
Idempotent writes for imported sales and cancellations.

Every method takes the cursor of an already-open transaction; atomicity is the
caller's job (see `batch.run_atomic`).

Merge policy differs on purpose per entity:
- sale header: last write wins on every scalar column; lines and payments are
  deleted and re-inserted so a re-import never leaks rows from a previous one.
- cancellation: only non-null incoming values overwrite (COALESCE), because a
  cancellation may arrive in several partial messages.
"""
from __future__ import annotations

from typing import Any, Optional

from psycopg.types.json import Jsonb

from .row_mapper import CancellationIn, PaymentIn, SaleIn, SaleLineIn


UPSERT_SALE_SQL = """
INSERT INTO ventas (
  venta_id, sucursal_id, fecha_emision, caja, serie, folio,
  subtotal, impuesto, total,
  cliente_origen, origen_raw, estado_origen, usuario_origen, usuhora_origen
) VALUES (
  %(venta_id)s, %(sucursal_id)s, %(fecha_emision)s, %(caja)s, %(serie)s, %(folio)s,
  %(subtotal)s, %(impuesto)s, %(total)s,
  %(cliente_origen)s, %(origen_raw)s, %(estado_origen)s, %(usuario_origen)s, %(usuhora_origen)s
)
ON CONFLICT (venta_id) DO UPDATE SET
  sucursal_id    = EXCLUDED.sucursal_id,
  fecha_emision  = EXCLUDED.fecha_emision,
  caja           = EXCLUDED.caja,
  serie          = EXCLUDED.serie,
  folio          = EXCLUDED.folio,
  subtotal       = EXCLUDED.subtotal,
  impuesto       = EXCLUDED.impuesto,
  total          = EXCLUDED.total,
  cliente_origen = EXCLUDED.cliente_origen,
  origen_raw     = EXCLUDED.origen_raw,
  estado_origen  = EXCLUDED.estado_origen,
  usuario_origen = EXCLUDED.usuario_origen,
  usuhora_origen = EXCLUDED.usuhora_origen,
  actualizado_en = now()
"""

DELETE_LINES_SQL = "DELETE FROM lineas_venta WHERE venta_id = %(venta_id)s"

INSERT_LINE_SQL = """
INSERT INTO lineas_venta (
  venta_id, renglon, sku, cantidad, precio, descuento, importe, impuesto, almacen,
  costo, costo_u, preciobase, observ, id_salida,
  usuario_origen, usuhora_origen, estado_origen, puid
) VALUES (
  %(venta_id)s, %(renglon)s, %(sku)s, %(cantidad)s, %(precio)s, %(descuento)s, %(importe)s, %(impuesto)s, %(almacen)s,
  %(costo)s, %(costo_u)s, %(preciobase)s, %(observ)s, %(id_salida)s,
  %(usuario_origen)s, %(usuhora_origen)s, %(estado_origen)s, %(puid)s
)
"""

DELETE_PAYMENTS_SQL = "DELETE FROM pagos_venta WHERE venta_id = %(venta_id)s"

INSERT_PAYMENT_SQL = """
INSERT INTO pagos_venta (venta_id, idx, metodo, monto)
VALUES (%(venta_id)s, %(idx)s, %(metodo)s::tipo_metodo_pago, %(monto)s)
"""

UPSERT_CANCELLATION_SQL = """
INSERT INTO cancelaciones (
  id_cancelacion_origen, venta_id, fecha_emision, fecha_cancelacion,
  motivo_cancelacion, folio_sustitucion, uuid_cfdi,
  cliente_origen, cliente_nombre, importe
) VALUES (
  %(id_cancelacion_origen)s, %(venta_id)s, %(fecha_emision)s, %(fecha_cancelacion)s,
  %(motivo_cancelacion)s, %(folio_sustitucion)s, %(uuid_cfdi)s,
  %(cliente_origen)s, %(cliente_nombre)s, %(importe)s
)
ON CONFLICT (id_cancelacion_origen) DO UPDATE SET
  venta_id           = COALESCE(EXCLUDED.venta_id, cancelaciones.venta_id),
  fecha_emision      = COALESCE(EXCLUDED.fecha_emision, cancelaciones.fecha_emision),
  fecha_cancelacion  = COALESCE(EXCLUDED.fecha_cancelacion, cancelaciones.fecha_cancelacion),
  motivo_cancelacion = COALESCE(EXCLUDED.motivo_cancelacion, cancelaciones.motivo_cancelacion),
  folio_sustitucion  = COALESCE(EXCLUDED.folio_sustitucion, cancelaciones.folio_sustitucion),
  uuid_cfdi          = COALESCE(EXCLUDED.uuid_cfdi, cancelaciones.uuid_cfdi),
  cliente_origen     = COALESCE(EXCLUDED.cliente_origen, cancelaciones.cliente_origen),
  cliente_nombre     = COALESCE(EXCLUDED.cliente_nombre, cancelaciones.cliente_nombre),
  importe            = COALESCE(EXCLUDED.importe, cancelaciones.importe),
  actualizado_en     = now()
"""

# Zero matched rows is fine: the sale may not have been imported yet.
FLAG_SALE_CANCELLED_SQL = """
UPDATE ventas
SET
  cancelada          = true,
  fecha_cancelacion  = COALESCE(%(fecha_cancelacion)s::timestamptz, fecha_cancelacion),
  motivo_cancelacion = COALESCE(%(motivo_cancelacion)s::text, motivo_cancelacion),
  folio_sustitucion  = COALESCE(%(folio_sustitucion)s::text, folio_sustitucion),
  uuid_cfdi          = COALESCE(%(uuid_cfdi)s::text, uuid_cfdi),
  actualizado_en     = now()
WHERE venta_id = %(venta_id)s::bigint
  AND (%(sucursal_id)s::text IS NULL OR sucursal_id = %(sucursal_id)s::text)
"""

# A cancellation may be imported before its sale; the sale picks it up here.
# The newest cancellation referencing the sale wins.
APPLY_STORED_CANCELLATION_SQL = """
UPDATE ventas v
SET
  cancelada          = true,
  fecha_cancelacion  = COALESCE(c.fecha_cancelacion, v.fecha_cancelacion),
  motivo_cancelacion = COALESCE(c.motivo_cancelacion, v.motivo_cancelacion),
  folio_sustitucion  = COALESCE(c.folio_sustitucion, v.folio_sustitucion),
  uuid_cfdi          = COALESCE(c.uuid_cfdi, v.uuid_cfdi),
  actualizado_en     = now()
FROM (
  SELECT fecha_cancelacion, motivo_cancelacion, folio_sustitucion, uuid_cfdi
  FROM cancelaciones
  WHERE venta_id = %(venta_id)s
  ORDER BY id_cancelacion_origen DESC
  LIMIT 1
) c
WHERE v.venta_id = %(venta_id)s
"""


def sale_header_params(sale: SaleIn, *, branch_id: Optional[str]) -> dict[str, Any]:
    return {
        "venta_id": sale.venta_id,
        "sucursal_id": branch_id or sale.sucursal,
        "fecha_emision": sale.fecha_emision,
        "caja": sale.caja,
        "serie": sale.serie,
        "folio": sale.folio,
        "subtotal": sale.subtotal,
        "impuesto": sale.impuesto,
        # Never trust a caller-supplied total.
        "total": sale.total,
        "cliente_origen": sale.cliente_origen,
        "origen_raw": Jsonb(sale.origen) if sale.origen is not None else None,
        "estado_origen": sale.estado_origen,
        "usuario_origen": sale.usuario_origen,
        "usuhora_origen": sale.usuhora_origen,
    }


def sale_line_params(venta_id: int, position: int, line: SaleLineIn) -> dict[str, Any]:
    return {
        "venta_id": venta_id,
        # Line numbers come from array position, not from the POS.
        "renglon": position + 1,
        "sku": line.sku,
        "cantidad": line.cantidad,
        "precio": line.precio,
        "descuento": line.descuento,
        "importe": line.amount(),
        "impuesto": line.impuesto,
        "almacen": line.almacen,
        "costo": line.costo,
        "costo_u": line.costo_u,
        "preciobase": line.preciobase,
        "observ": line.observ,
        "id_salida": line.id_salida,
        "usuario_origen": line.usuario_origen,
        "usuhora_origen": line.usuhora_origen,
        "estado_origen": line.estado_origen,
        "puid": line.puid,
    }


def payment_params(venta_id: int, payment: PaymentIn) -> dict[str, Any]:
    return {"venta_id": venta_id, "idx": payment.idx, "metodo": payment.metodo, "monto": payment.monto}


def cancellation_params(c: CancellationIn) -> dict[str, Any]:
    return {
        "id_cancelacion_origen": c.id_cancelacion_origen,
        "venta_id": c.venta_id,
        "fecha_emision": c.fecha_emision,
        "fecha_cancelacion": c.fecha_cancelacion,
        "motivo_cancelacion": c.motivo_cancelacion,
        "folio_sustitucion": c.folio_sustitucion,
        "uuid_cfdi": c.uuid_cfdi,
        "cliente_origen": c.cliente_origen,
        "cliente_nombre": c.cliente_nombre,
        "importe": c.importe,
    }


class UpsertEngine:
    """
    Applies canonical sales/cancellations.

    `branch_id` is the single-store deployment switch (FORCED_BRANCH_ID): when set,
    every sale is written under that branch and cancellations only flip sales of that
    branch. Per-request branch resolution (from the caller's token) can replace it by
    constructing one engine per request.
    """

    def __init__(self, *, branch_id: Optional[str] = None):
        self.branch_id = branch_id

    async def upsert_sale(self, cur, sale: SaleIn) -> None:
        await cur.execute(UPSERT_SALE_SQL, sale_header_params(sale, branch_id=self.branch_id))
        await cur.execute(APPLY_STORED_CANCELLATION_SQL, {"venta_id": sale.venta_id})

        await cur.execute(DELETE_LINES_SQL, {"venta_id": sale.venta_id})
        for position, line in enumerate(sale.lineas):
            await cur.execute(INSERT_LINE_SQL, sale_line_params(sale.venta_id, position, line))

        await cur.execute(DELETE_PAYMENTS_SQL, {"venta_id": sale.venta_id})
        for payment in sale.pagos:
            await cur.execute(INSERT_PAYMENT_SQL, payment_params(sale.venta_id, payment))

    async def upsert_cancellation(self, cur, c: CancellationIn) -> None:
        await cur.execute(UPSERT_CANCELLATION_SQL, cancellation_params(c))
        if c.venta_id is None:
            return
        await cur.execute(
            FLAG_SALE_CANCELLED_SQL,
            {
                "venta_id": c.venta_id,
                "fecha_cancelacion": c.fecha_cancelacion,
                "motivo_cancelacion": c.motivo_cancelacion,
                "folio_sustitucion": c.folio_sustitucion,
                "uuid_cfdi": c.uuid_cfdi,
                "sucursal_id": self.branch_id,
            },
        )

"""
Normalize raw POS records into canonical import models.

POS releases keep renaming fields, so every accepted source key lives in the
alias tables below: one entry per canonical field, keys in priority order
(current name first, then legacy names). Add a new alias here and nowhere else.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..validation import NullishText, PaymentMethod
from .errors import ImportValidationError


SALE_ALIASES: dict[str, tuple[str, ...]] = {
    "venta_id": ("venta_id", "id_venta", "VENTA"),
    "fecha_emision": ("fecha_emision", "fecha_hora_local", "F_EMISION"),
    "sucursal": ("sucursal", "sucursal_pos", "sucursal_id"),
    "caja": ("caja", "terminal"),
    "serie": ("serie", "folio_serie", "serieDocumento"),
    "folio": ("folio", "folio_numero", "NO_REFEREN"),
    "subtotal": ("subtotal",),
    "impuesto": ("impuesto", "impuestos", "tax"),
    "cliente_origen": ("cliente_origen", "cliente"),
    "origen": ("origen", "origen_raw"),
    "estado_origen": ("estado_origen", "estado"),
    "usuario_origen": ("usuario_origen", "usuario"),
    "usuhora_origen": ("usuhora_origen", "usuhora"),
    "lineas": ("lineas", "partidas"),
    "pagos": ("pagos", "formas_pago"),
}

LINE_ALIASES: dict[str, tuple[str, ...]] = {
    "sku": ("sku", "articulo"),
    "cantidad": ("cantidad",),
    "precio": ("precio", "precio_unitario"),
    "descuento": ("descuento",),
    "importe": ("importe", "total_linea"),
    "impuesto": ("impuesto",),
    "almacen": ("almacen", "almacen_pos"),
    "costo": ("costo",),
    "costo_u": ("costo_u",),
    "preciobase": ("preciobase",),
    "observ": ("observ",),
    "id_salida": ("id_salida",),
    "usuario_origen": ("usuario_origen", "usuario"),
    "usuhora_origen": ("usuhora_origen", "usuhora"),
    "estado_origen": ("estado_origen", "estado"),
    "puid": ("puid",),
}

PAYMENT_ALIASES: dict[str, tuple[str, ...]] = {
    "idx": ("idx", "indice"),
    "metodo": ("metodo", "forma_pago"),
    "monto": ("monto",),
}

CANCELLATION_ALIASES: dict[str, tuple[str, ...]] = {
    "id_cancelacion_origen": ("id_cancelacion_origen", "id_cancelacion", "CANCELACION"),
    "venta_id": ("venta_id", "id_venta"),
    "fecha_emision": ("fecha_emision",),
    "fecha_cancelacion": ("fecha_cancelacion",),
    "motivo_cancelacion": ("motivo_cancelacion", "motivo"),
    "folio_sustitucion": ("folio_sustitucion",),
    "uuid_cfdi": ("uuid_cfdi", "uuid"),
    "cliente_origen": ("cliente_origen",),
    "cliente_nombre": ("cliente_nombre",),
    "importe": ("importe",),
}


def resolve_aliases(raw: Mapping[str, Any], table: Mapping[str, tuple[str, ...]]) -> dict[str, Any]:
    """First non-null source key wins; absent fields are left out for model defaults."""
    out: dict[str, Any] = {}
    for field, keys in table.items():
        for key in keys:
            value = raw.get(key)
            if value is not None:
                out[field] = value
                break
    return out


class SaleLineIn(BaseModel):
    sku: str = Field(min_length=1)
    cantidad: Decimal
    precio: Decimal
    descuento: Decimal = Decimal("0")
    importe: Optional[Decimal] = None
    impuesto: Optional[Decimal] = None
    almacen: NullishText = None
    costo: Optional[Decimal] = None
    costo_u: Optional[Decimal] = None
    preciobase: Optional[Decimal] = None
    observ: NullishText = None
    id_salida: Optional[int] = None
    usuario_origen: NullishText = None
    usuhora_origen: NullishText = None
    estado_origen: NullishText = None
    puid: NullishText = None

    @field_validator("sku", mode="before")
    @classmethod
    def _strip_sku(cls, v):
        return str(v).strip() if v is not None else v

    def amount(self) -> Decimal:
        # The POS-computed amount wins when it is sent.
        if self.importe is not None:
            return self.importe
        return self.cantidad * self.precio - self.descuento


class PaymentIn(BaseModel):
    idx: int = Field(ge=0)
    metodo: PaymentMethod
    monto: Decimal


class SaleIn(BaseModel):
    venta_id: int = Field(ge=0)
    fecha_emision: datetime
    sucursal: NullishText = None
    caja: NullishText = None
    serie: NullishText = None
    folio: NullishText = None
    subtotal: Decimal
    impuesto: Decimal = Decimal("0")
    cliente_origen: NullishText = None
    origen: Optional[Any] = None
    estado_origen: NullishText = None
    usuario_origen: NullishText = None
    usuhora_origen: NullishText = None
    lineas: list[SaleLineIn] = Field(min_length=1)
    pagos: list[PaymentIn] = Field(min_length=1)

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.impuesto


class CancellationIn(BaseModel):
    id_cancelacion_origen: int = Field(ge=0)
    venta_id: Optional[int] = Field(default=None, ge=0)
    fecha_emision: Optional[datetime] = None
    fecha_cancelacion: Optional[datetime] = None
    motivo_cancelacion: NullishText = None
    folio_sustitucion: NullishText = None
    uuid_cfdi: NullishText = None
    cliente_origen: NullishText = None
    cliente_nombre: NullishText = None
    importe: Optional[Decimal] = None


def _child_list(value: Any, table: Mapping[str, tuple[str, ...]]) -> Any:
    if not isinstance(value, list):
        # Let the model report the type error.
        return value
    return [resolve_aliases(v, table) if isinstance(v, Mapping) else v for v in value]


def map_sale(raw: Mapping[str, Any]) -> SaleIn:
    data = resolve_aliases(raw, SALE_ALIASES)
    if "lineas" in data:
        data["lineas"] = _child_list(data["lineas"], LINE_ALIASES)
    if "pagos" in data:
        data["pagos"] = _child_list(data["pagos"], PAYMENT_ALIASES)
    return SaleIn.model_validate(data)


def map_cancellation(raw: Mapping[str, Any]) -> CancellationIn:
    return CancellationIn.model_validate(resolve_aliases(raw, CANCELLATION_ALIASES))


def _map_all(raws: Iterable[Any], mapper) -> list:
    out = []
    for index, raw in enumerate(raws):
        if not isinstance(raw, Mapping):
            raise ImportValidationError(index, [{"loc": (), "msg": "record must be an object", "type": "dict_type"}])
        try:
            out.append(mapper(raw))
        except ValidationError as e:
            raise ImportValidationError(index, e.errors()) from e
    return out


def map_sales(raws: Iterable[Any]) -> list[SaleIn]:
    return _map_all(raws, map_sale)


def map_cancellations(raws: Iterable[Any]) -> list[CancellationIn]:
    return _map_all(raws, map_cancellation)

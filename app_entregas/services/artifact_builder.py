# -*- coding: utf-8 -*-
"""Comprobante de entrega: PDF imprimible con el código y el QR de confirmación.

Building a receipt mints a new delivery code and stores a pending delivery
record for it. The QR code points the customer's phone at
``{base_url}/confirmar-entrega?codigo=<codigo>&pedido=<pedido>``.
"""
import io
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from urllib.parse import urlencode

import qrcode
from reportlab.graphics.barcode import code128
from reportlab.lib.colors import HexColor, white
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas
from sqlalchemy.ext.asyncio import AsyncSession

from app_entregas.core import config
from app_entregas.core.errors import DuplicateCode
from app_entregas.services.code_generator import generar_codigo_entrega
from app_entregas.sql import crud
from app_entregas.sql.schemas import ClienteIn, DepositoIn, PedidoIn, Producto

logger = logging.getLogger(__name__)

# ─── PAGE & PALETTE ───
PAGE_W = A4[0] / mm  # 210
PAGE_H = A4[1] / mm  # 297
MARGEN = 15
ANCHO = PAGE_W - MARGEN * 2

AZUL = HexColor("#2563EB")
GRIS = HexColor("#6B7280")
OSCURO = HexColor("#1F2937")
FONDO = HexColor("#F8FAFC")
BORDE = HexColor("#C8C8C8")
FILA_PAR = HexColor("#FCFCFD")

MAX_PRODUCTOS_VISIBLES = 8
LARGO_MAXIMO_NOMBRE = 35

TIPOS_ENVIO = {
    "envio": "Envío a domicilio",
    "flete": "Flete",
    "retiro": "Retiro en depósito",
}

MESES = ["enero", "febrero", "marzo", "abril", "mayo", "junio", "julio",
         "agosto", "septiembre", "octubre", "noviembre", "diciembre"]


@dataclass
class Comprobante:
    codigo_entrega: str
    url_confirmacion: str
    pdf: bytes
    entrega: object

    @property
    def filename(self) -> str:
        return f"entrega-pedido-{self.entrega.pedido_id}.pdf"


# ─── FORMAT HELPERS ───

def url_confirmacion(base_url: str, codigo: str, pedido_id) -> str:
    query = urlencode({"codigo": codigo, "pedido": str(pedido_id)})
    return f"{base_url.rstrip('/')}/confirmar-entrega?{query}"


def formatear_tipo_envio(tipo: Optional[str]) -> str:
    if not tipo:
        return TIPOS_ENVIO["retiro"]
    return TIPOS_ENVIO.get(tipo, tipo)


def formatear_monto(valor: float) -> str:
    """$ con separador de miles '.' y decimales ',' (solo si hacen falta)."""
    texto = f"{valor:,.0f}" if float(valor).is_integer() else f"{valor:,.2f}"
    return "$" + texto.replace(",", "_").replace(".", ",").replace("_", ".")


def fecha_larga(momento: datetime) -> str:
    return f"{momento.day:02d} de {MESES[momento.month - 1]} de {momento.year}"


def truncar_nombre(nombre: str, largo: int = LARGO_MAXIMO_NOMBRE) -> str:
    return nombre if len(nombre) <= largo else nombre[:largo] + "..."


def calcular_lineas(productos: List[Producto],
                    max_visibles: int = MAX_PRODUCTOS_VISIBLES) -> Tuple[List[Producto], int, float]:
    """Returns (visible rows, hidden row count, total over every row)."""
    visibles = list(productos[:max_visibles])
    ocultos = max(len(productos) - max_visibles, 0)
    total = sum(p.subtotal for p in productos)
    return visibles, ocultos, total


def generar_qr(datos: str) -> ImageReader:
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=10, border=1)
    qr.add_data(datos)
    qr.make(fit=True)
    imagen = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    imagen.save(buffer, format="PNG")
    buffer.seek(0)
    return ImageReader(buffer)


# ─── DRAWING ───

class _Lienzo:
    """Thin wrapper over a reportlab canvas using mm measured from the top edge."""

    def __init__(self, buffer, titulo: str):
        self.c = canvas.Canvas(buffer, pagesize=A4)
        self.c.setTitle(titulo)
        self.c.setAuthor("Repartos SI")

    def rect(self, x, y, w, h, fill=None, stroke=None, stroke_w=0.5, radius=0):
        self.c.saveState()
        if fill:
            self.c.setFillColor(fill)
        if stroke:
            self.c.setStrokeColor(stroke)
            self.c.setLineWidth(stroke_w)
        args = (x * mm, (PAGE_H - y - h) * mm, w * mm, h * mm)
        if radius > 0:
            self.c.roundRect(*args, radius * mm, fill=1 if fill else 0, stroke=1 if stroke else 0)
        else:
            self.c.rect(*args, fill=1 if fill else 0, stroke=1 if stroke else 0)
        self.c.restoreState()

    def line(self, x1, y1, x2, y2, color=BORDE, width=0.5):
        self.c.saveState()
        self.c.setStrokeColor(color)
        self.c.setLineWidth(width)
        self.c.line(x1 * mm, (PAGE_H - y1) * mm, x2 * mm, (PAGE_H - y2) * mm)
        self.c.restoreState()

    def text(self, texto, x, y, font="Helvetica", size=9, color=OSCURO, align="left"):
        self.c.saveState()
        self.c.setFont(font, size)
        self.c.setFillColor(color)
        if align == "center":
            self.c.drawCentredString(x * mm, (PAGE_H - y) * mm, texto)
        elif align == "right":
            self.c.drawRightString(x * mm, (PAGE_H - y) * mm, texto)
        else:
            self.c.drawString(x * mm, (PAGE_H - y) * mm, texto)
        self.c.restoreState()

    def lines(self, texto, x, y, max_w, font="Helvetica", size=8, color=GRIS, leading=3.5):
        for linea in simpleSplit(texto, font, size, max_w * mm):
            self.text(linea, x, y, font=font, size=size, color=color)
            y += leading
        return y

    def image(self, imagen, x, y, w, h):
        self.c.drawImage(imagen, x * mm, (PAGE_H - y - h) * mm, w * mm, h * mm)

    def barcode(self, valor, x, y, h):
        codigo = code128.Code128(valor, barHeight=h * mm, barWidth=0.5, quiet=False)
        codigo.drawOn(self.c, x * mm, (PAGE_H - y - h) * mm)

    def save(self):
        self.c.showPage()
        self.c.save()


def render_comprobante_pdf(pedido: PedidoIn, cliente: Optional[ClienteIn], deposito: Optional[DepositoIn],
                           codigo: str, url: str, generado: datetime = None) -> bytes:
    """Dibuja el comprobante de una página y devuelve los bytes del PDF."""
    generado = generado or datetime.now(timezone.utc)
    buffer = io.BytesIO()
    doc = _Lienzo(buffer, f"Comprobante de entrega - Pedido #{pedido.id}")
    doc.c.setSubject(codigo)

    # Header band
    doc.rect(0, 0, PAGE_W, 35, fill=AZUL)
    doc.text("REPARTOS SI", MARGEN, 15, font="Helvetica-Bold", size=20, color=white)
    doc.text("Comprobante de Entrega", MARGEN, 23, size=10, color=white)
    doc.text(f"Pedido #{pedido.id}", PAGE_W - MARGEN, 15, font="Helvetica-Bold", size=12,
             color=white, align="right")
    doc.text(fecha_larga(generado), PAGE_W - MARGEN, 23, size=9, color=white, align="right")

    y = 45

    # Delivery code: text plus Code128
    doc.rect(MARGEN, y, ANCHO, 26, fill=FONDO, stroke=BORDE, radius=2)
    doc.text("CÓDIGO DE ENTREGA", MARGEN + 5, y + 6, size=8, color=GRIS)
    doc.text(codigo, MARGEN + 5, y + 12, font="Courier-Bold", size=10)
    doc.barcode(codigo, MARGEN + 5, y + 15, 8)
    y += 33

    # Two columns: customer / origin warehouse
    col_w = (ANCHO - 10) / 2
    doc.rect(MARGEN, y, col_w, 40, fill=FONDO, radius=2)
    doc.text("CLIENTE", MARGEN + 5, y + 8, font="Helvetica-Bold", size=9, color=AZUL)
    nombre_cliente = (cliente.nombre if cliente and cliente.nombre else None) or pedido.cliente or "N/A"
    doc.text(nombre_cliente, MARGEN + 5, y + 16, size=9)
    doc.lines(pedido.direccion or "Retiro en depósito", MARGEN + 5, y + 24, col_w - 10)
    doc.text(f"Envío: {formatear_tipo_envio(pedido.tipo_envio)}", MARGEN + 5, y + 35, size=8, color=GRIS)

    col2_x = MARGEN + col_w + 10
    doc.rect(col2_x, y, col_w, 40, fill=FONDO, radius=2)
    doc.text("DEPÓSITO ORIGEN", col2_x + 5, y + 8, font="Helvetica-Bold", size=9, color=AZUL)
    nombre_deposito = (deposito.nombre if deposito and deposito.nombre else None) or pedido.deposito or "N/A"
    doc.text(nombre_deposito, col2_x + 5, y + 16, size=9)
    doc.lines((deposito.direccion if deposito else None) or "N/A", col2_x + 5, y + 24, col_w - 10)
    y += 48

    # Line items
    doc.text("DETALLE DE PRODUCTOS", MARGEN, y, font="Helvetica-Bold", size=10, color=AZUL)
    y += 6
    doc.rect(MARGEN, y, ANCHO, 8, fill=AZUL)
    for titulo, x in (("PRODUCTO", 3), ("CANT.", 95), ("P. UNIT.", 115), ("SUBTOTAL", 145)):
        doc.text(titulo, MARGEN + x, y + 5.5, font="Helvetica-Bold", size=8, color=white)
    y += 8

    visibles, ocultos, total_calculado = calcular_lineas(pedido.productos)
    for index, producto in enumerate(visibles):
        if index % 2 == 0:
            doc.rect(MARGEN, y, ANCHO, 7, fill=FILA_PAR)
        doc.text(truncar_nombre(producto.nombre), MARGEN + 3, y + 5, size=8)
        doc.text(str(producto.cantidad), MARGEN + 98, y + 5, size=8)
        doc.text(formatear_monto(producto.precio), MARGEN + 115, y + 5, size=8)
        doc.text(formatear_monto(producto.subtotal), MARGEN + 145, y + 5, size=8)
        y += 7

    if ocultos:
        doc.text(f"... y {ocultos} producto(s) más", MARGEN + 3, y + 4, size=7, color=GRIS)
        y += 6

    y += 2
    doc.line(MARGEN + 90, y, MARGEN + ANCHO, y)
    y += 6
    total = pedido.total if pedido.total is not None else total_calculado
    doc.text("TOTAL:", MARGEN + 115, y, font="Helvetica-Bold", size=11)
    doc.text(formatear_monto(total), MARGEN + 145, y, font="Helvetica-Bold", size=11, color=AZUL)

    # QR box
    y += 12
    qr_box_h = 75
    qr_size = 50
    doc.rect(MARGEN, y, ANCHO, qr_box_h, fill=FONDO, stroke=AZUL, radius=3)
    doc.text("ESCANEAR PARA CONFIRMAR ENTREGA", PAGE_W / 2, y + 10, font="Helvetica-Bold",
             size=10, color=AZUL, align="center")
    doc.image(generar_qr(url), (PAGE_W - qr_size) / 2, y + 15, qr_size, qr_size)
    doc.text("El cliente debe escanear este código QR con su celular para confirmar la recepción",
             PAGE_W / 2, y + qr_box_h - 5, size=7, color=GRIS, align="center")

    # Footer
    footer_y = PAGE_H - 15
    doc.rect(0, footer_y, PAGE_W, 15, fill=AZUL)
    doc.text("Comprobante válido. Al escanear el QR, los productos se agregarán automáticamente "
             "al stock del cliente.", PAGE_W / 2, footer_y + 6, size=7, color=white, align="center")
    doc.text(f"Generado: {generado.strftime('%d/%m/%Y %H:%M:%S')} | Código: {codigo}",
             PAGE_W / 2, footer_y + 11, size=7, color=white, align="center")

    doc.save()
    return buffer.getvalue()


async def build_comprobante(db: AsyncSession, pedido: PedidoIn, cliente: ClienteIn = None,
                            deposito: DepositoIn = None, base_url: str = None) -> Comprobante:
    """Genera el comprobante de un pedido listo y registra la entrega pendiente.

    Each call mints a fresh code, so building twice for the same order leaves
    two independent pending codes.
    """
    base_url = base_url or config.PUBLIC_BASE_URL
    cliente_id = (cliente.id if cliente and cliente.id is not None else None) or pedido.cliente_id or 0
    total = pedido.total if pedido.total is not None else calcular_lineas(pedido.productos)[2]

    for intento in range(1, max(1, config.MAX_CODE_ATTEMPTS) + 1):
        codigo = generar_codigo_entrega(pedido.id, cliente_id)
        url = url_confirmacion(base_url, codigo, pedido.id)
        generado = datetime.now(timezone.utc)
        pdf = render_comprobante_pdf(pedido, cliente, deposito, codigo, url, generado=generado)
        record = {
            "codigo_entrega": codigo,
            "pedido_id": pedido.id,
            "cliente_id": cliente_id,
            "deposito": (deposito.nombre if deposito and deposito.nombre else None) or pedido.deposito,
            "fecha": generado,
            "productos": [p.model_dump() for p in pedido.productos],
            "total": total,
        }
        try:
            entrega = await crud.add_pending(db, record)
        except DuplicateCode:
            logger.warning("[ENTREGAS] Colisión de código %s (intento %s)", codigo, intento)
            continue
        logger.info("[ENTREGAS] 🧾 Comprobante generado para pedido %s con código %s", pedido.id, codigo)
        return Comprobante(codigo_entrega=codigo, url_confirmacion=url, pdf=pdf, entrega=entrega)

    raise DuplicateCode(codigo)

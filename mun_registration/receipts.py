"""
Receipt generation

Receipts are produced in two stages. ``layout_receipt`` is a pure function
that computes the charges and paginates the receipt into pages of
positioned blocks; ``render_receipt_pdf`` draws that layout with ReportLab.
Given the same inputs and the same ``generated_at`` the output is
byte-for-byte identical.
"""

import io
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from .models import Committee, Registration

INDIVIDUAL_SEAT_PRICE = 15.0
PAIRED_SEAT_PRICE = 30.0
SMALL_DELEGATION_FEE = 20.0
LARGE_DELEGATION_FEE = 30.0

SEAT_LABEL_SEPARATOR = " - "

PRIMARY_CURRENCY = "€"
SECONDARY_CURRENCY = "Bs."

COLORS = {
    'primary': colors.HexColor('#D53137'),
    'text': colors.HexColor('#242424'),
    'muted': colors.HexColor('#808080'),
    'bullet': colors.HexColor('#646464'),
    'seat_fill': colors.HexColor('#F8F8F8'),
    'backup_fill': colors.HexColor('#FFF8DC'),
    'summary_fill': colors.HexColor('#F0FFF0'),
}

MARGIN_X = 20 * mm
TOP_MARGIN = 30 * mm
BOTTOM_MARGIN = 30 * mm
BANNER_HEIGHT = 25 * mm
LINE_HEIGHT = 8 * mm
HEADING_HEIGHT = LINE_HEIGHT + 2 * mm
ITEM_LINE_HEIGHT = 5 * mm
ITEM_PADDING = 2 * mm
NOTE_LINE_HEIGHT = 5 * mm
SECTION_SPACING = 15 * mm
VALUE_X = 80 * mm


@dataclass(frozen=True)
class ReceiptCharges:
    """Computed charges of a registration"""
    individual_seats: int
    paired_seats: int
    seat_cost: float
    delegation_fee: float
    total: float
    rate: float
    secondary_total: float


@dataclass(frozen=True)
class ReceiptOptions:
    """Conference-level text printed on every receipt"""
    conference_name: str = "XVII ROBLESMUN"
    contact_email: str = "mun@losroblesenlinea.com.ve"
    title: str = "Registration Receipt"


@dataclass(frozen=True)
class Block:
    """
    One positioned element of a receipt page

    ``y`` is the distance from the top of the page, filled in by the
    paginator.
    """
    kind: str
    text: str = ""
    value: str = ""
    lines: Tuple[str, ...] = field(default_factory=tuple)
    height: float = 0.0
    y: float = 0.0


def committee_name_of(seat_label: str) -> str:
    """Committee part of a "Committee - Seat" label"""
    return seat_label.split(SEAT_LABEL_SEPARATOR, 1)[0]


def compute_charges(
    registration: Registration,
    committees: Iterable[Committee],
    rate: float,
) -> ReceiptCharges:
    """
    Price a registration

    Each requested seat is charged the paired rate when its committee is
    flagged as double-seat and the individual rate otherwise (unknown
    committees count as individual). The delegation fee is waived for
    independent delegates and otherwise depends on the delegation size.

    Args:
        registration: Registration being priced
        committees: Committees used for the price lookup, keyed by name
        rate: Exchange rate from the primary to the secondary currency

    Returns:
        ReceiptCharges
    """
    by_name: Dict[str, Committee] = {committee.name: committee for committee in committees}

    paired = 0
    individual = 0
    for label in registration.seats_requested:
        committee = by_name.get(committee_name_of(label))
        if committee is not None and committee.is_double_seat:
            paired += 1
        else:
            individual += 1

    seat_cost = individual * INDIVIDUAL_SEAT_PRICE + paired * PAIRED_SEAT_PRICE
    if registration.independent_delegate:
        fee = 0.0
    elif registration.is_big_group:
        fee = LARGE_DELEGATION_FEE
    else:
        fee = SMALL_DELEGATION_FEE

    total = seat_cost + fee
    return ReceiptCharges(
        individual_seats=individual,
        paired_seats=paired,
        seat_cost=seat_cost,
        delegation_fee=fee,
        total=total,
        rate=rate,
        secondary_total=total * rate
    )


def _money(amount: float) -> str:
    return f"{PRIMARY_CURRENCY}{amount:.2f}"


class _Paginator:
    """Places blocks top to bottom, breaking pages when a block doesn't fit"""

    def __init__(self, page_height: float):
        self.limit = page_height - BOTTOM_MARGIN
        self.pages: List[List[Block]] = [[]]
        self.y = TOP_MARGIN

    def fits(self, height: float) -> bool:
        return self.y + height <= self.limit

    def break_page(self) -> None:
        self.pages.append([])
        self.y = TOP_MARGIN

    def place(self, block: Block) -> None:
        if not self.fits(block.height):
            self.break_page()
        self.pages[-1].append(replace(block, y=self.y))
        self.y += block.height

    def gap(self, height: float) -> None:
        self.y += height

    def section(self, heading: str, blocks: Sequence[Block], repeat_heading: bool = False) -> None:
        """
        Place a headed section

        The heading is kept on the same page as the first block. With
        ``repeat_heading`` every page the section spills onto starts with
        the heading marked "(continued)".
        """
        first = blocks[0].height if blocks else 0.0
        if not self.fits(HEADING_HEIGHT + first):
            self.break_page()
        self.place(Block("heading", heading, height=HEADING_HEIGHT))
        for block in blocks:
            if not self.fits(block.height):
                self.break_page()
                if repeat_heading:
                    self.place(Block("heading", f"{heading} (continued)", height=HEADING_HEIGHT))
            self.place(block)
        self.gap(SECTION_SPACING)


def _fields(pairs: Sequence[Tuple[str, str]]) -> List[Block]:
    return [Block("field", label, value, height=LINE_HEIGHT) for label, value in pairs]


def _seat_items(labels: Sequence[str], kind: str, width: float) -> List[Block]:
    items = []
    for index, label in enumerate(labels, 1):
        lines = tuple(simpleSplit(f"{index}. {label}", "Helvetica", 9, width - 10 * mm)) or ("",)
        items.append(Block(
            kind,
            lines=lines,
            height=len(lines) * ITEM_LINE_HEIGHT + ITEM_PADDING
        ))
    return items


def _summary(charges: ReceiptCharges) -> List[Block]:
    rows = [Block("summary", "Main seats:", _money(charges.seat_cost), height=LINE_HEIGHT)]
    if charges.individual_seats:
        rows.append(Block(
            "summary_detail",
            f"  • Individual ({charges.individual_seats} × {_money(INDIVIDUAL_SEAT_PRICE)}):",
            _money(charges.individual_seats * INDIVIDUAL_SEAT_PRICE),
            height=LINE_HEIGHT
        ))
    if charges.paired_seats:
        rows.append(Block(
            "summary_detail",
            f"  • Pairs ({charges.paired_seats} × {_money(PAIRED_SEAT_PRICE)}):",
            _money(charges.paired_seats * PAIRED_SEAT_PRICE),
            height=LINE_HEIGHT
        ))
    rows.append(Block(
        "summary",
        "Delegation fee:",
        _money(charges.delegation_fee) if charges.delegation_fee > 0 else "N/A (Independent delegate)",
        height=LINE_HEIGHT
    ))
    rows.append(Block("summary_total", "TOTAL DUE:", _money(charges.total), height=LINE_HEIGHT + 3 * mm))
    rows.append(Block(
        "summary",
        f"Equivalent in {SECONDARY_CURRENCY}:",
        f"{SECONDARY_CURRENCY} {charges.secondary_total:.2f}",
        height=LINE_HEIGHT
    ))
    rows.append(Block(
        "summary",
        "Exchange rate:",
        f"{SECONDARY_CURRENCY} {charges.rate:.2f}/{PRIMARY_CURRENCY}",
        height=LINE_HEIGHT
    ))
    return rows


def _notes(options: ReceiptOptions, width: float) -> List[Block]:
    notes = [
        "• This receipt is only valid once the payment has been verified.",
        "• Main seats take priority over backup seats.",
        "• Final seat assignment depends on availability.",
        "• Keep this receipt for future reference.",
        f"• For questions, contact: {options.contact_email}",
    ]
    blocks = []
    for note in notes:
        lines = tuple(simpleSplit(note, "Helvetica", 9, width - 10 * mm))
        blocks.append(Block("note", lines=lines, height=len(lines) * NOTE_LINE_HEIGHT + 2))
    return blocks


def _registration_type(registration: Registration) -> str:
    if registration.independent_delegate:
        return "Independent delegate"
    if registration.is_big_group:
        return "Large delegation (13+ seats)"
    return "Small delegation (1-12 seats)"


def layout_receipt(
    registration: Registration,
    committees: Iterable[Committee],
    rate: float,
    generated_at: datetime,
    options: ReceiptOptions = ReceiptOptions(),
    page_size: Tuple[float, float] = A4,
) -> Tuple[ReceiptCharges, List[List[Block]]]:
    """
    Compute charges and paginate a receipt

    Args:
        registration: Registration the receipt is for
        committees: Committees used for the price lookup
        rate: Exchange rate
        generated_at: Generation timestamp printed on the receipt
        options: Conference-level text
        page_size: (width, height) in points

    Returns:
        (charges, pages) where each page is a list of positioned blocks
    """
    width, height = page_size
    content_width = width - 2 * MARGIN_X
    charges = compute_charges(registration, committees, rate)

    flow = _Paginator(height)
    flow.gap(SECTION_SPACING)
    flow.place(Block("title", options.title, height=SECTION_SPACING))
    flow.place(Block("rule", height=SECTION_SPACING))

    flow.section("User Information", _fields([
        ("Full name:", registration.full_name),
        ("Email:", registration.email),
        ("Institution:", registration.institution),
        ("User type:", "Faculty" if registration.is_faculty else "Student"),
    ]))

    flow.section("Registration Information", _fields([
        ("Registration date:", generated_at.strftime("%d/%m/%Y")),
        ("Transaction ID:", registration.transaction_id or "Pending"),
        ("Payment method:", registration.payment_method or "N/A"),
        ("Payment status:", "Pending verification" if registration.transaction_id else "Not processed"),
    ]))

    flow.section("Registration Details", _fields([
        ("Seats requested:", str(registration.seats)),
        ("Registration type:", _registration_type(registration)),
        ("Backup seats:", "Yes" if registration.requires_backup else "No"),
    ]))

    if registration.seats_requested:
        flow.section(
            "Main Seats Selected",
            _seat_items(registration.seats_requested, "seat", content_width),
            repeat_heading=True
        )

    if registration.requires_backup and registration.backup_seats_requested:
        flow.section(
            "Backup Seats Selected",
            _seat_items(registration.backup_seats_requested, "backup_seat", content_width),
            repeat_heading=True
        )

    flow.section("Financial Summary", _summary(charges))
    flow.section("Important Information", _notes(options, content_width))

    return charges, flow.pages


def _draw_banner(pdf: canvas.Canvas, options: ReceiptOptions, width: float, height: float) -> None:
    pdf.setFillColor(COLORS['primary'])
    pdf.rect(0, height - BANNER_HEIGHT, width, BANNER_HEIGHT, stroke=0, fill=1)
    pdf.setFillColor(colors.white)
    pdf.setFont("Helvetica-Bold", 20)
    pdf.drawCentredString(width / 2, height - 16 * mm, options.conference_name)


def _draw_block(pdf: canvas.Canvas, block: Block, width: float, height: float) -> None:
    y = height - block.y

    if block.kind == "title":
        pdf.setFillColor(COLORS['text'])
        pdf.setFont("Helvetica-Bold", 16)
        pdf.drawCentredString(width / 2, y, block.text)

    elif block.kind == "rule":
        pdf.setStrokeColor(COLORS['primary'])
        pdf.setLineWidth(1)
        pdf.line(MARGIN_X, y, width - MARGIN_X, y)

    elif block.kind == "heading":
        pdf.setFillColor(COLORS['primary'])
        pdf.setFont("Helvetica-Bold", 14)
        pdf.drawString(MARGIN_X, y, block.text)

    elif block.kind == "field":
        pdf.setFillColor(COLORS['text'])
        pdf.setFont("Helvetica-Bold", 10)
        pdf.drawString(MARGIN_X, y, block.text)
        pdf.setFont("Helvetica", 10)
        pdf.drawString(VALUE_X, y, block.value)

    elif block.kind in ("seat", "backup_seat"):
        fill = COLORS['seat_fill'] if block.kind == "seat" else COLORS['backup_fill']
        pdf.setFillColor(fill)
        pdf.rect(MARGIN_X, y - block.height + ITEM_PADDING, width - 2 * MARGIN_X, block.height, stroke=0, fill=1)
        pdf.setFillColor(COLORS['text'])
        pdf.setFont("Helvetica", 9)
        for index, line in enumerate(block.lines):
            pdf.drawString(MARGIN_X + 5 * mm, y - ITEM_LINE_HEIGHT * index - 3 * mm + ITEM_PADDING, line)

    elif block.kind.startswith("summary"):
        if block.kind == "summary_total":
            pdf.setFont("Helvetica-Bold", 11)
            pdf.setFillColor(COLORS['primary'])
        elif block.kind == "summary_detail":
            pdf.setFont("Helvetica", 9)
            pdf.setFillColor(COLORS['bullet'])
        else:
            pdf.setFont("Helvetica", 10)
            pdf.setFillColor(COLORS['text'])
        pdf.drawString(MARGIN_X + 5 * mm, y, block.text)
        pdf.drawRightString(width - MARGIN_X - 5 * mm, y, block.value)

    elif block.kind == "note":
        pdf.setFillColor(COLORS['text'])
        pdf.setFont("Helvetica", 9)
        for index, line in enumerate(block.lines):
            pdf.drawString(MARGIN_X + 5 * mm, y - NOTE_LINE_HEIGHT * index, line)


def _draw_footer(
    pdf: canvas.Canvas,
    options: ReceiptOptions,
    generated_at: datetime,
    page_number: int,
    page_count: int,
    width: float,
) -> None:
    footer_y = 20 * mm
    pdf.setStrokeColor(COLORS['primary'])
    pdf.line(MARGIN_X, footer_y + 5 * mm, width - MARGIN_X, footer_y + 5 * mm)
    pdf.setFillColor(COLORS['muted'])
    pdf.setFont("Helvetica", 8)
    pdf.drawCentredString(width / 2, footer_y, f"{options.conference_name} - Generated automatically")
    pdf.drawCentredString(
        width / 2,
        footer_y - 5 * mm,
        f"Generated: {generated_at.strftime('%d/%m/%Y %H:%M:%S')} - Page {page_number} of {page_count}"
    )


def render_receipt_pdf(
    registration: Registration,
    committees: Iterable[Committee],
    rate: float,
    options: ReceiptOptions = ReceiptOptions(),
    generated_at: Optional[datetime] = None,
) -> bytes:
    """
    Render a receipt as PDF

    Args:
        registration: Registration the receipt is for
        committees: Committees used for the price lookup
        rate: Exchange rate
        options: Conference-level text
        generated_at: Timestamp printed on the receipt, defaults to now

    Returns:
        PDF document bytes
    """
    generated_at = generated_at or datetime.now()
    width, height = A4
    _, pages = layout_receipt(registration, committees, rate, generated_at, options, A4)

    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4, invariant=1)
    pdf.setTitle(f"{options.conference_name} - {options.title}")
    pdf.setAuthor(options.conference_name)

    for page_number, blocks in enumerate(pages, 1):
        if page_number == 1:
            _draw_banner(pdf, options, width, height)
        for block in blocks:
            _draw_block(pdf, block, width, height)
        _draw_footer(pdf, options, generated_at, page_number, len(pages), width)
        pdf.showPage()

    pdf.save()
    return buffer.getvalue()


def receipt_filename(registration: Registration, generated_at: datetime) -> str:
    """File name of a registration receipt"""
    reference = registration.transaction_id or str(int(generated_at.timestamp() * 1000))
    return f"receipts/registration-{reference}.pdf"

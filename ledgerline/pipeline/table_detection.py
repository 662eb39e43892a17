"""
Table and column detection for the Ledgerline pipeline.

Groups positioned tokens into text lines, finds transaction-table regions,
derives column bands from whitespace gutters and infers each column's role
from its content, its header and its position.
"""

import statistics
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from ledgerline.pipeline.models import (
    AMOUNT_COLUMN_TYPES,
    NUMERIC_COLUMN_TYPES,
    ColumnBoundary,
    ColumnType,
    PageTokens,
    PositionedToken,
    TableMetrics,
)
from ledgerline.pipeline.thresholds import DEFAULT_CONFIG, PipelineConfig
from ledgerline.services.date_parser import get_date_parser
from ledgerline.services.numeric_parser import AmountDirection, get_numeric_parser
from ledgerline.services.text_patterns import (
    SECTION_HEADER_PATTERNS,
    is_boilerplate,
    is_column_header_line,
    match_header_keyword,
)

logger = structlog.get_logger(__name__)

COLUMN_WEIGHTS: Dict[ColumnType, float] = {
    ColumnType.DATE: 1.5,
    ColumnType.BALANCE: 1.5,
    ColumnType.DESCRIPTION: 1.2,
    ColumnType.DEBIT: 1.0,
    ColumnType.CREDIT: 1.0,
    ColumnType.AMOUNT: 1.0,
    ColumnType.REFERENCE: 0.5,
    ColumnType.VALUE_DATE: 0.5,
    ColumnType.UNKNOWN: 0.3,
}


@dataclass
class TextLine:
    """Tokens sharing a baseline on one page, sorted left to right."""
    page: int
    top: float
    tokens: List[PositionedToken]

    @property
    def text(self) -> str:
        return " ".join(t.text for t in self.tokens)

    @property
    def token_count(self) -> int:
        return len(self.tokens)

    @property
    def x0(self) -> float:
        return min(t.x0 for t in self.tokens)

    @property
    def x1(self) -> float:
        return max(t.x1 for t in self.tokens)


@dataclass
class TableRegion:
    """Consecutive table-like lines, before column inference."""
    lines: List[TextLine]
    header: Optional[TextLine] = None

    @property
    def pages(self) -> List[int]:
        pages = {line.page for line in self.lines}
        if self.header is not None:
            pages.add(self.header.page)
        return sorted(pages)

    @property
    def average_tokens(self) -> float:
        return sum(line.token_count for line in self.lines) / len(self.lines) if self.lines else 0.0


@dataclass
class ColumnProfile:
    """Content statistics of one column band."""
    samples: List[str]
    date_score: float = 0.0
    numeric_score: float = 0.0
    text_score: float = 0.0
    average_length: float = 0.0
    has_credit_markers: bool = False
    has_debit_markers: bool = False
    has_negatives: bool = False
    has_positives: bool = False
    right_aligned: bool = False


@dataclass
class DetectionResult:
    """Detector output for a whole document."""
    tables: List[TableMetrics]
    lines: List[TextLine]
    confidence: float = 0.0
    warnings: List[str] = field(default_factory=list)
    discarded_regions: int = 0


def group_tokens_into_lines(
    tokens: Iterable[PositionedToken],
    y_tolerance: float = DEFAULT_CONFIG.line_y_tolerance,
) -> List[TextLine]:
    """
    Group tokens into lines by vertical proximity.

    A token joins the current line while its top is within `y_tolerance`
    of the line's first token; lines are returned in page/reading order.
    """
    ordered = sorted(tokens, key=lambda t: (t.page, t.top, t.x0))
    lines: List[TextLine] = []
    current: List[PositionedToken] = []
    line_top: Optional[float] = None
    line_page: Optional[int] = None

    for token in ordered:
        if current and token.page == line_page and abs(token.top - line_top) < y_tolerance:
            current.append(token)
            continue
        if current:
            lines.append(TextLine(page=line_page, top=line_top, tokens=sorted(current, key=lambda t: t.x0)))
        current = [token]
        line_top = token.top
        line_page = token.page

    if current:
        lines.append(TextLine(page=line_page, top=line_top, tokens=sorted(current, key=lambda t: t.x0)))

    return lines


class TableDetector:
    """
    Detects transaction tables and infers column roles.

    Column typing order:
    1. Header keyword in the region's header row
    2. Mixed CR/DR markers -> signed amount column
    3. Date-shaped content -> date
    4. Money-shaped content -> balance/credit/debit by position (right to left)
    5. Text-heavy -> description, short codes -> reference
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self._config = config or DEFAULT_CONFIG
        self._date_parser = get_date_parser()
        self._numeric_parser = get_numeric_parser()

    # =========================================================================
    # Public API
    # =========================================================================

    def detect_tables(self, pages: List[PageTokens]) -> DetectionResult:
        """
        Detect table regions and columns across all pages of a document.

        Args:
            pages: Extractor output, one entry per page.

        Returns:
            DetectionResult with one TableMetrics per kept region.
        """
        all_tokens = [t for page in pages for t in page.tokens]
        lines = group_tokens_into_lines(all_tokens, self._config.line_y_tolerance)
        regions = self._merge_compatible_regions(self.detect_table_regions(lines))

        tables: List[TableMetrics] = []
        discarded = 0
        for region in regions:
            columns = self.detect_column_boundaries(region)
            if not self._is_usable_layout(columns):
                discarded += 1
                logger.debug(
                    "Discarding table region",
                    pages=region.pages,
                    lines=len(region.lines),
                    columns=[c.inferred_type.value for c in columns],
                )
                continue
            tables.append(
                TableMetrics(
                    table_index=len(tables),
                    columns=columns,
                    page_numbers=region.pages,
                    line_count=len(region.lines),
                    rows_extracted=self._count_dated_rows(region, columns),
                )
            )

        warnings: List[str] = []
        if len(tables) > self._config.max_regions_before_penalty:
            warnings.append(
                f"Table layout is fragmented into {len(tables)} regions; column roles may be unreliable"
            )

        confidence = self.calculate_confidence(tables)
        logger.info(
            "Table detection complete",
            lines=len(lines),
            regions=len(regions),
            tables=len(tables),
            discarded=discarded,
            confidence=round(confidence, 3),
        )
        return DetectionResult(
            tables=tables,
            lines=lines,
            confidence=confidence,
            warnings=warnings,
            discarded_regions=discarded,
        )

    def detect_table_regions(self, lines: List[TextLine]) -> List[TableRegion]:
        """
        Split lines into candidate table regions.

        A region is a run of lines with at least `min_tokens_per_line` tokens,
        broken by page changes, large vertical gaps and section headings.
        Boilerplate lines are ignored; a column-header line opens a region.
        """
        config = self._config
        regions: List[TableRegion] = []
        current: List[TextLine] = []
        header: Optional[TextLine] = None

        def close_region():
            nonlocal current, header
            if current and self._is_consistent(current):
                regions.append(TableRegion(lines=current, header=header))
            current = []
            header = None

        for line in lines:
            text = line.text
            if is_column_header_line(text):
                close_region()
                header = line
                continue
            if any(p.search(text) for p in SECTION_HEADER_PATTERNS):
                close_region()
                continue
            if line.token_count < config.min_tokens_per_line:
                continue
            if not self._starts_with_date(line) and is_boilerplate(text):
                continue
            if current:
                last = current[-1]
                if line.page != last.page or line.top - last.top > config.region_gap_threshold:
                    saved_header = header if line.page == last.page else None
                    close_region()
                    header = saved_header
            current.append(line)

        close_region()
        return regions

    def detect_column_boundaries(self, region: TableRegion) -> List[ColumnBoundary]:
        """
        Find column bands from whitespace gutters and type each band.

        Args:
            region: Table region (data lines plus optional header line).

        Returns:
            Typed ColumnBoundary list, left to right.
        """
        spans = self._find_column_spans(region.lines)
        if not spans:
            return []

        profiles = [self._profile_column(region.lines, left, right) for left, right in spans]
        headers = self._header_texts(region.header, spans)

        typed: List[Tuple[ColumnType, float]] = [
            self._classify_by_header(header) if header else (ColumnType.UNKNOWN, 0.0)
            for header in headers
        ]
        typed = self._classify_by_content(typed, profiles, spans)
        typed = self._post_process(typed, profiles, spans)

        return [
            ColumnBoundary(
                center_x=round((left + right) / 2, 2),
                left_edge=round(left, 2),
                right_edge=round(right, 2),
                inferred_type=col_type,
                confidence=round(confidence, 3),
                header_text=header,
            )
            for (left, right), (col_type, confidence), header in zip(spans, typed, headers)
        ]

    def calculate_confidence(self, tables: List[TableMetrics]) -> float:
        """
        Weighted confidence of the detected layout.

        Weighted mean of column confidences, plus bonuses for a complete
        layout and enough rows, minus a penalty per region beyond the
        fragmentation limit.
        """
        if not tables:
            return 0.0
        config = self._config
        total_weight = 0.0
        weighted = 0.0
        for table in tables:
            for column in table.columns:
                weight = COLUMN_WEIGHTS.get(column.inferred_type, 0.3)
                total_weight += weight
                weighted += weight * column.confidence
        confidence = weighted / total_weight if total_weight else 0.0

        types = {c.inferred_type for t in tables for c in t.columns}
        has_amounts = ColumnType.AMOUNT in types or {ColumnType.DEBIT, ColumnType.CREDIT} <= types
        if ColumnType.DATE in types and ColumnType.BALANCE in types and has_amounts:
            confidence += 0.15
        if sum(t.rows_extracted for t in tables) >= 3:
            confidence += 0.05
        extra_regions = len(tables) - config.max_regions_before_penalty
        if extra_regions > 0:
            confidence -= config.fragmentation_penalty * extra_regions
        return max(0.0, min(1.0, confidence))

    # =========================================================================
    # Regions
    # =========================================================================

    def _starts_with_date(self, line: TextLine) -> bool:
        head = line.tokens[:3]
        for size in (3, 2, 1):
            if len(head) >= size and self._date_parser.looks_like_date(" ".join(t.text for t in head[:size])):
                return True
        return False

    def _is_consistent(self, lines: List[TextLine]) -> bool:
        """At least `min_table_lines` lines close to the median token count."""
        if len(lines) < self._config.min_table_lines:
            return False
        median = statistics.median(line.token_count for line in lines)
        consistent = sum(
            1 for line in lines
            if abs(line.token_count - median) <= self._config.max_line_token_spread
        )
        return consistent >= self._config.min_table_lines

    def _merge_compatible_regions(self, regions: List[TableRegion]) -> List[TableRegion]:
        """Merge neighbouring regions that continue the same table."""
        merged: List[TableRegion] = []
        for region in regions:
            if merged:
                previous = merged[-1]
                page_gap = region.pages[0] - previous.pages[-1]
                similar = abs(region.average_tokens - previous.average_tokens) <= self._config.region_merge_token_diff
                if page_gap in (0, 1) and similar:
                    merged[-1] = TableRegion(
                        lines=previous.lines + region.lines,
                        header=previous.header or region.header,
                    )
                    continue
            merged.append(region)
        return merged

    def _is_usable_layout(self, columns: List[ColumnBoundary]) -> bool:
        if len(columns) < 2:
            return False
        types = {c.inferred_type for c in columns}
        return ColumnType.DATE in types and bool(types & NUMERIC_COLUMN_TYPES)

    def _count_dated_rows(self, region: TableRegion, columns: List[ColumnBoundary]) -> int:
        date_column = next((c for c in columns if c.inferred_type == ColumnType.DATE), None)
        if date_column is None:
            return 0
        count = 0
        for line in region.lines:
            text = " ".join(t.text for t in line.tokens if date_column.contains(t.center_x))
            if self._date_parser.looks_like_date(text):
                count += 1
        return count

    # =========================================================================
    # Column Bands
    # =========================================================================

    def _density_index(self, lines: List[TextLine]) -> int:
        average = sum(line.token_count for line in lines) / len(lines)
        if average > self._config.dense_tokens_per_line:
            return 0
        if average > self._config.normal_tokens_per_line:
            return 1
        return 2

    def _find_column_spans(self, lines: List[TextLine]) -> List[Tuple[float, float]]:
        """
        Locate column spans with a gutter histogram.

        Each bucket counts the lines with ink in it; runs of near-empty
        buckets long enough to be a gutter separate columns.
        """
        if not lines:
            return []
        config = self._config
        density = self._density_index(lines)
        resolution = config.gutter_resolution
        min_x = min(line.x0 for line in lines)
        max_x = max(line.x1 for line in lines)
        bucket_count = int((max_x - min_x) / resolution) + 1

        occupancy = [0] * bucket_count
        for line in lines:
            covered = set()
            for token in line.tokens:
                start = int((token.x0 - min_x) / resolution)
                end = min(int((token.x1 - min_x) / resolution), bucket_count - 1)
                covered.update(range(start, end + 1))
            for bucket in covered:
                occupancy[bucket] += 1

        threshold = config.gutter_ratios[density] * len(lines)
        min_gutter = config.min_gutter_buckets[density]
        is_empty = [count <= threshold for count in occupancy]

        spans: List[Tuple[int, int]] = []
        start: Optional[int] = None
        gap_run = 0
        for index, empty in enumerate(is_empty):
            if empty:
                gap_run += 1
                if start is not None and gap_run >= min_gutter:
                    spans.append((start, index - gap_run))
                    start = None
                continue
            if start is None:
                start = index
            gap_run = 0
        if start is not None:
            end = bucket_count - 1
            while end > start and is_empty[end]:
                end -= 1
            spans.append((start, end))

        x_spans = [
            (min_x + first * resolution, min_x + (last + 1) * resolution)
            for first, last in spans
        ]
        return self._merge_narrow_spans(x_spans, config.min_column_widths[density])

    def _merge_narrow_spans(
        self,
        spans: List[Tuple[float, float]],
        min_width: float,
    ) -> List[Tuple[float, float]]:
        """Fold spans narrower than a column into their closest neighbour."""
        spans = list(spans)
        while len(spans) > 1:
            narrow = next((i for i, (l, r) in enumerate(spans) if r - l < min_width), None)
            if narrow is None:
                break
            left_gap = spans[narrow][0] - spans[narrow - 1][1] if narrow > 0 else float("inf")
            right_gap = spans[narrow + 1][0] - spans[narrow][1] if narrow < len(spans) - 1 else float("inf")
            if left_gap <= right_gap:
                spans[narrow - 1:narrow + 1] = [(spans[narrow - 1][0], spans[narrow][1])]
            else:
                spans[narrow:narrow + 2] = [(spans[narrow][0], spans[narrow + 1][1])]
        return spans

    def _header_texts(
        self,
        header: Optional[TextLine],
        spans: List[Tuple[float, float]],
    ) -> List[Optional[str]]:
        """Assign header words to the nearest column span."""
        texts: List[List[str]] = [[] for _ in spans]
        if header is None:
            return [None] * len(spans)
        for token in header.tokens:
            center = token.center_x
            best = min(
                range(len(spans)),
                key=lambda i: 0.0 if spans[i][0] <= center <= spans[i][1]
                else min(abs(center - spans[i][0]), abs(center - spans[i][1])),
            )
            texts[best].append(token.text)
        return [" ".join(words) if words else None for words in texts]

    # =========================================================================
    # Column Typing
    # =========================================================================

    def _profile_column(self, lines: List[TextLine], left: float, right: float) -> ColumnProfile:
        samples: List[str] = []
        lefts: List[float] = []
        rights: List[float] = []
        for line in lines:
            tokens = [t for t in line.tokens if left <= t.center_x <= right]
            if not tokens:
                continue
            samples.append(" ".join(t.text for t in tokens))
            lefts.append(min(t.x0 for t in tokens))
            rights.append(max(t.x1 for t in tokens))

        profile = ColumnProfile(samples=samples)
        if not samples:
            return profile

        count = len(samples)
        numeric = 0
        for sample in samples:
            parsed = self._numeric_parser.parse(sample)
            if parsed.value is not None and parsed.has_decimal:
                numeric += 1
                profile.has_negatives = profile.has_negatives or parsed.is_negative
                profile.has_positives = profile.has_positives or not parsed.is_negative
                if parsed.direction == AmountDirection.CREDIT:
                    profile.has_credit_markers = True
                elif parsed.direction == AmountDirection.DEBIT:
                    profile.has_debit_markers = True

        profile.numeric_score = numeric / count
        profile.date_score = sum(1 for s in samples if self._date_parser.looks_like_date(s)) / count
        profile.text_score = sum(1 for s in samples if sum(c.isalpha() for c in s) >= 3) / count
        profile.average_length = sum(len(s) for s in samples) / count
        if len(samples) > 1:
            profile.right_aligned = statistics.pstdev(rights) <= statistics.pstdev(lefts) + 1.0
        return profile

    def _classify_by_header(self, header: str) -> Tuple[ColumnType, float]:
        role = match_header_keyword(header)
        if role is None:
            for word in header.split():
                role = match_header_keyword(word)
                if role is not None:
                    break
        if role is None:
            return ColumnType.UNKNOWN, 0.0
        confidence = {
            ColumnType.AMOUNT: 0.9,
            ColumnType.DESCRIPTION: 0.9,
            ColumnType.REFERENCE: 0.85,
            ColumnType.VALUE_DATE: 0.85,
        }.get(ColumnType(role), 0.95)
        return ColumnType(role), confidence

    def _classify_by_content(
        self,
        typed: List[Tuple[ColumnType, float]],
        profiles: List[ColumnProfile],
        spans: List[Tuple[float, float]],
    ) -> List[Tuple[ColumnType, float]]:
        config = self._config
        typed = list(typed)
        numeric_candidates: List[int] = []

        for index, profile in enumerate(profiles):
            if typed[index][0] != ColumnType.UNKNOWN or not profile.samples:
                continue
            if profile.has_credit_markers and profile.has_debit_markers:
                typed[index] = (ColumnType.AMOUNT, 0.85)
            elif profile.date_score > config.date_share_threshold:
                typed[index] = (ColumnType.DATE, round(0.6 + 0.4 * profile.date_score, 3))
            elif profile.numeric_score > config.numeric_share_threshold and (
                profile.right_aligned or profile.numeric_score >= 0.8
            ):
                numeric_candidates.append(index)

        self._type_numeric_by_position(typed, profiles, numeric_candidates)

        text_widths = [
            spans[i][1] - spans[i][0]
            for i, (col_type, _) in enumerate(typed)
            if col_type == ColumnType.UNKNOWN and profiles[i].text_score > 0.5
        ]
        widest_text = max(text_widths, default=0.0)
        for index, (col_type, _) in enumerate(typed):
            profile = profiles[index]
            if col_type != ColumnType.UNKNOWN or not profile.samples:
                continue
            width = spans[index][1] - spans[index][0]
            if profile.text_score > 0.5 and width >= 0.7 * widest_text:
                typed[index] = (ColumnType.DESCRIPTION, round(0.5 + 0.4 * profile.text_score, 3))
            elif profile.average_length <= 14 and all(" " not in s for s in profile.samples[:20]):
                typed[index] = (ColumnType.REFERENCE, 0.6)
            else:
                typed[index] = (ColumnType.UNKNOWN, 0.3)
        return typed

    def _type_numeric_by_position(
        self,
        typed: List[Tuple[ColumnType, float]],
        profiles: List[ColumnProfile],
        candidates: List[int],
    ) -> None:
        """Rightmost money column is the balance; the rest are debit then credit."""
        assigned = {col_type for col_type, _ in typed}
        remaining = sorted(candidates)
        if remaining and ColumnType.BALANCE not in assigned:
            typed[remaining.pop()] = (ColumnType.BALANCE, 0.85)
        if not remaining:
            return

        free_roles = [r for r in (ColumnType.DEBIT, ColumnType.CREDIT) if r not in assigned]
        if ColumnType.AMOUNT in assigned:
            free_roles = []

        if len(remaining) == 1 and len(free_roles) == 2:
            profile = profiles[remaining[0]]
            signed = profile.has_negatives and profile.has_positives
            marked = profile.has_credit_markers or profile.has_debit_markers
            typed[remaining[0]] = (ColumnType.AMOUNT, 0.75 if signed or marked else 0.6)
            return

        pairs = list(zip(reversed(remaining), reversed(free_roles)))
        for index, role in pairs:
            typed[index] = (role, 0.8 if role == ColumnType.CREDIT else 0.7)
        for index in remaining[: len(remaining) - len(pairs)]:
            typed[index] = (ColumnType.UNKNOWN, 0.3)

    def _post_process(
        self,
        typed: List[Tuple[ColumnType, float]],
        profiles: List[ColumnProfile],
        spans: List[Tuple[float, float]],
    ) -> List[Tuple[ColumnType, float]]:
        typed = list(typed)

        date_indices = [i for i, (t, _) in enumerate(typed) if t == ColumnType.DATE]
        for index in date_indices[1:]:
            typed[index] = (ColumnType.VALUE_DATE, typed[index][1])

        if not date_indices and typed and typed[0][0] in (ColumnType.UNKNOWN, ColumnType.REFERENCE):
            if profiles[0].date_score >= 0.2:
                typed[0] = (ColumnType.DATE, 0.4)

        types = [t for t, _ in typed]
        if ColumnType.BALANCE not in types:
            amount_indices = [i for i, t in enumerate(types) if t in AMOUNT_COLUMN_TYPES]
            if len(amount_indices) >= 2:
                typed[amount_indices[-1]] = (ColumnType.BALANCE, 0.5)

        if ColumnType.DESCRIPTION not in [t for t, _ in typed]:
            unknown = [i for i, (t, _) in enumerate(typed) if t == ColumnType.UNKNOWN]
            if unknown:
                widest = max(unknown, key=lambda i: spans[i][1] - spans[i][0])
                typed[widest] = (ColumnType.DESCRIPTION, 0.5)

        descriptions = [i for i, (t, _) in enumerate(typed) if t == ColumnType.DESCRIPTION]
        if len(descriptions) > 1:
            keep = max(descriptions, key=lambda i: spans[i][1] - spans[i][0])
            for index in descriptions:
                if index != keep:
                    typed[index] = (ColumnType.UNKNOWN, 0.3)

        return typed


def get_table_detector(config: Optional[PipelineConfig] = None) -> TableDetector:
    """Get TableDetector instance."""
    return TableDetector(config=config)

from __future__ import annotations

import copy
import xml.etree.ElementTree as ET
from datetime import datetime, time, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pandas as pd
from jinja2 import Environment, FileSystemLoader, select_autoescape

from .engine import AllocationTable
from .models import OUTPUT_FORMATS, ReportConfig

SOFTWARE_NAME = "allocation-report"
SOFTWARE_VERSION = "0.1.0"
XML_TIME_FMT = "%Y-%m-%dT%H:%M:%S"
OUTPUT_FILES: Dict[str, str] = {
    "html": "allocation.html",
    "xml": "allocation.xml",
    "csv": "allocation.csv",
}

_TEMPLATES = Environment(
    loader=FileSystemLoader(str(Path(__file__).resolve().parent / "templates")),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def _shorten(name: str, limit: int) -> str:
    # The tail of long project names tends to be the distinctive part.
    if limit > 0 and len(name) > limit:
        return "..." + name[-limit:]
    return name


def render_html(table: AllocationTable, config: ReportConfig) -> str:
    number_format = config.number_format
    bucket_ids = table.visible_bucket_ids()
    rows: List[Dict[str, object]] = []
    for resource_id in table.resource_ids():
        cells = []
        for bucket_id in bucket_ids:
            value = table.fraction(bucket_id, resource_id)
            cells.append("" if round(value, number_format.precision) == 0 else number_format.format(value))
        rows.append(
            {
                "label": table.resource_label(resource_id),
                "cells": cells,
                "total": number_format.format(table.resource_total(resource_id)),
            }
        )
    template = _TEMPLATES.get_template("allocation.html")
    return template.render(
        title=config.report_name,
        start=config.start.isoformat(),
        end=config.end.isoformat(),
        names=[_shorten(table.bucket_name(bucket_id), config.html_name_limit) for bucket_id in bucket_ids],
        bucket_ids=bucket_ids,
        rows=rows,
        bucket_totals=[number_format.format(table.bucket_total(bucket_id)) for bucket_id in bucket_ids],
        grand_total=number_format.format(table.grand_total()),
    )


def parse_custom_info(fragment: str) -> List[ET.Element]:
    """Parse an XML fragment (possibly several sibling elements)."""
    if not fragment.strip():
        return []
    try:
        wrapper = ET.fromstring(f"<custom>{fragment}</custom>")
    except ET.ParseError as exc:
        raise ValueError(f"xml_custom_info is not well-formed XML: {exc}") from exc
    return list(wrapper)


def _comment_text(text: str) -> str:
    # "--" may not appear inside an XML comment.
    while "--" in text:
        text = text.replace("--", "- -")
    return text


def render_xml(table: AllocationTable, config: ReportConfig, generated_at: Optional[datetime] = None) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    comment = _comment_text(
        f"\nGenerated by {SOFTWARE_NAME} v{SOFTWARE_VERSION} on {generated_at.isoformat(timespec='seconds')}\n"
        f"Report: {config.report_name}\n"
        f"Period: {config.start.isoformat()} - {config.end.isoformat()}\n"
    )
    root = ET.Element(
        "NikuDataBus",
        {
            "xmlns:xsi": "http://www.w3.org/2001/XMLSchema-instance",
            "xsi:noNamespaceSchemaLocation": "../xsd/nikuxog_project.xsd",
        },
    )
    ET.SubElement(
        root,
        "Header",
        {"action": "write", "externalSource": "NIKU", "objectType": "project", "version": "7.5.0"},
    )
    projects = ET.SubElement(root, "Projects")
    segment_start = datetime.combine(config.start, time()).strftime(XML_TIME_FMT)
    segment_finish = (datetime.combine(config.end, time()) - timedelta(seconds=1)).strftime(XML_TIME_FMT)
    custom_info = parse_custom_info(config.xml_custom_info)
    for bucket_id in table.bucket_ids():
        project = ET.SubElement(projects, "Project", {"name": table.bucket_name(bucket_id), "projectID": bucket_id})
        resources = ET.SubElement(project, "Resources")
        for resource_id in table.bucket_resource_ids(bucket_id):
            resource = ET.SubElement(
                resources, "Resource", {"resourceID": resource_id, "defaultAllocation": "0"}
            )
            curve = ET.SubElement(resource, "AllocCurve")
            ET.SubElement(
                curve,
                "Segment",
                {
                    "start": segment_start,
                    "finish": segment_finish,
                    "sum": config.number_format.format(table.fraction(bucket_id, resource_id)),
                },
            )
        project.extend(copy.deepcopy(element) for element in custom_info)
    ET.indent(root)
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n<!--{comment}-->\n{body}\n'


def csv_rows(table: AllocationTable) -> List[List[object]]:
    bucket_ids = table.bucket_ids()
    rows: List[List[object]] = [
        [""] + [table.bucket_name(bucket_id) for bucket_id in bucket_ids],
        ["Resource"] + list(bucket_ids),
    ]
    frame = table.to_frame(bucket_ids)
    for resource_id in table.resource_ids():
        rows.append([table.resource_label(resource_id)] + [float(v) for v in frame.loc[resource_id]])
    return rows


def write_csv_report(table: AllocationTable, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(csv_rows(table)).to_csv(path, index=False, header=False)


def write_reports(
    table: AllocationTable,
    config: ReportConfig,
    outdir: str | Path,
    formats: Optional[Iterable[str]] = None,
) -> List[Path]:
    target = Path(outdir)
    target.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for fmt in formats or config.formats:
        if fmt not in OUTPUT_FORMATS:
            raise ValueError(f"unsupported output format '{fmt}'")
        path = target / OUTPUT_FILES[fmt]
        if fmt == "html":
            path.write_text(render_html(table, config), encoding="utf-8")
        elif fmt == "xml":
            path.write_text(render_xml(table, config), encoding="utf-8")
        else:
            write_csv_report(table, path)
        written.append(path)
    return written

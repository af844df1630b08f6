"""
N720 edge report groups and their template files

One report group per meter, published on MQTT1. Templates are uploaded together
as a single "report" file of `ReportN:{json}` lines and referenced from each
group by path.
"""

import json
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

DEFAULT_METER_TYPE = 'XMC34F'
GATEWAY_TELEMETRY_TOPIC = 'v1/gateway/telemetry'
EMPTY_MD5 = '0' * 32
MAX_GROUP_NAME = 20

# Fields published per meter type; register maps themselves live with the meter tables
N720_REPORTING_FIELDS: Dict[str, List[str]] = {
    'XMC34F': [
        'v_l1', 'v_l2', 'v_l3', 'i_l1', 'i_l2', 'i_l3',
        'p_l1', 'p_l2', 'p_l3', 'freq', 'q_l1', 'q_l2', 'q_l3',
        'p_tot', 'q_tot', 's_tot', 'pf_tot', 'e_tot', 'e_q_tot',
        'pf_sgn_tot', 'p_sgn_tot', 'q_sgn_tot',
        'p_sgn_l1', 'p_sgn_l2', 'p_sgn_l3',
        'q_sgn_l1', 'q_sgn_l2', 'q_sgn_l3',
        'ktv', 'kta',
    ],
    'EM4371': [
        'v_l1', 'v_l2', 'v_l3', 'v_l1_l2', 'v_l3_l2', 'v_l1_l3',
        'i_l1', 'i_l2', 'i_l3',
        'p_l1', 'p_l2', 'p_l3',
        'pf_l1', 'pf_l2', 'pf_l3',
        'freq', 'q_l1', 'q_l2', 'q_l3',
        's_l1', 's_l2', 's_l3',
        'e_tot', 'ct_ratio', 'pt_ratio', 'wiring_mode',
    ],
    'Sfere720': [
        'v_l1', 'v_l2', 'v_l3', 'i_l1', 'i_l2', 'i_l3', 'i_tot',
        'p_l1', 'p_l2', 'p_l3', 'p_tot', 'freq',
        'q_l1', 'q_l2', 'q_l3', 'q_tot',
        's_l1', 's_l2', 's_l3', 's_tot',
        'pf_l1', 'pf_l2', 'pf_l3', 'pf_tot',
        'e_l1', 'e_l2', 'e_l3', 'e_tot', 'e_q_tot',
        'thd_v_l1', 'thd_v_l2', 'thd_v_l3',
        'thd_i_l1', 'thd_i_l2', 'thd_i_l3',
    ],
    'EnergyNG9': [
        'v_l1', 'v_l2', 'v_l3',
        'i_l1', 'i_l2', 'i_l3', 'i_l4', 'i_l5', 'i_l6', 'i_l7', 'i_l8', 'i_l9', 'i_tot',
        's_l1', 's_l2', 's_l3', 's_l4', 's_l5', 's_l6', 's_l7', 's_l8', 's_l9', 's_tot',
        'p_l1', 'p_l2', 'p_l3', 'p_l4', 'p_l5', 'p_l6', 'p_l7', 'p_l8', 'p_l9', 'p_tot',
        'q_l1', 'q_l2', 'q_l3',
        'pf_l1', 'pf_l2', 'pf_l3',
        'freq',
        'e_l1', 'e_l2', 'e_l3', 'e_tot', 'e_neg_tot',
    ],
    'TAC4300': [
        'v_l1', 'v_l2', 'v_l3', 'i_l1', 'i_l2', 'i_l3', 'i_tot',
        'p_l1', 'p_l2', 'p_l3', 'p_tot', 'freq',
        'q_l1', 'q_l2', 'q_l3',
        's_l1', 's_l2', 's_l3', 's_tot',
        'pf_l1', 'pf_l2', 'pf_l3',
        'e_l1', 'e_l2', 'e_l3', 'e_tot', 'e_neg_tot',
        'i_max_l1', 'i_max_l2', 'i_max_l3',
        'thd_v_l1', 'thd_v_l2', 'thd_v_l3',
        'thd_i_l1', 'thd_i_l2', 'thd_i_l3',
    ],
}


@dataclass
class MeterReport:
    """A meter to publish: display name, type key and its 1-based slave index"""
    name: str
    meter_type: str = DEFAULT_METER_TYPE
    meter_index: Optional[int] = None


def reporting_fields(meter_type: str) -> List[str]:
    return N720_REPORTING_FIELDS.get(meter_type, N720_REPORTING_FIELDS[DEFAULT_METER_TYPE])


def sanitize_group_name(name: str) -> str:
    """Firmware accepts [A-Za-z0-9_] only, at most 20 characters"""
    return re.sub(r'[^A-Za-z0-9_]', '_', name)[:MAX_GROUP_NAME]


def is_gateway_topic(topic: str) -> bool:
    return topic.lstrip('/') == GATEWAY_TELEMETRY_TOPIC


def build_template(meter: MeterReport, index: int, topic: str) -> Dict:
    """Field -> alias map; the gateway telemetry topic wraps it under the device name"""
    meter_index = meter.meter_index if meter.meter_index is not None else index + 1
    values = {field: f"{field}_{meter_index}" for field in reporting_fields(meter.meter_type)}
    payload = {'ts': 'sys_timestamp_ms', 'values': values}
    if is_gateway_topic(topic):
        return {meter.name: [payload]}
    return payload


def build_report_group(meter: MeterReport, index: int, topic: str, period: int) -> Dict:
    return {
        'enable': 1,
        'name': sanitize_group_name(meter.name),
        'link': 'MQTT1',
        'topic': topic.lstrip('/'),
        'qos': 1,
        'retention': 0,
        'cond': {
            'period': period,
            'timed': {'type': 0, 'hh': 0, 'mm': 0},
        },
        'data_report_type': 0,
        'change_report_type': 0,
        'err_enable': 0,
        'err_info': 'error',
        'tmpl_file': f"/template/Report{index}.json",
        'fkey_md5': EMPTY_MD5,
        'ucld_node': [],
    }


def build_edge_report(meters: List[MeterReport], topic: str = 'UploadTopic', period: int = 60) -> Dict:
    return {'group': [build_report_group(m, i, topic, period) for i, m in enumerate(meters)]}


def build_template_file(meters: List[MeterReport], topic: str = 'UploadTopic') -> str:
    """The multi-template "report" file: one `ReportN:{json}` line per meter"""
    lines = [f"Report{i}:{json.dumps(build_template(m, i, topic), separators=(',', ':'))}"
             for i, m in enumerate(meters)]
    return '\n'.join(lines) + '\n' if lines else ''


def encode_edge_report(edge_report: Dict) -> bytes:
    """Compact JSON bytes, the exact bytes the CRC header is computed over"""
    return json.dumps(edge_report, separators=(',', ':')).encode('utf-8')

from __future__ import annotations

from datetime import datetime
from string import Template
from typing import Dict, List, Optional

from ldes_publisher.schemas import TimeWindow
from ldes_publisher.utils import get_logger

logger = get_logger("queries")

AVERAGE_HR_PATIENT_1 = """PREFIX saref: <https://saref.etsi.org/core/>
PREFIX dahccsensors: <https://dahcc.idlab.ugent.be/Homelab/SensorsAndActuators/>
PREFIX xsd: <http://www.w3.org/2001/XMLSchema#>
PREFIX : <https://rsp.js/>
REGISTER RStream <output> AS
SELECT (AVG(?o) AS ?averageHR1)
FROM NAMED WINDOW :w1 ON STREAM <http://localhost:3000/dataset_participant1/data/> [RANGE $width STEP $width]
WHERE {
    WINDOW :w1 {
        ?s saref:hasValue ?o .
        ?s saref:relatesToProperty dahccsensors:wearable.bvp .
        ?s saref:hasTimestamp ?time .
        FILTER(?time >= "$start"^^xsd:dateTime && ?time <= "$end"^^xsd:dateTime)
    }
}"""


class QueryRegistry:
    """
    Named continuous queries, materialized per time window.

    Templates use ``$start``/``$end`` (ISO timestamps) and ``$width``
    (window width in seconds).
    """

    def __init__(self, templates: Optional[Dict[str, str]] = None):
        self._templates: Dict[str, Template] = {}
        for name, template in (templates or {}).items():
            self.register(name, template)

    def register(self, name: str, template: str) -> None:
        self._templates[name] = Template(template)

    def names(self) -> List[str]:
        return sorted(self._templates)

    def get_query(self, name: str, start: datetime, end: datetime) -> Optional[str]:
        template = self._templates.get(name)
        if template is None:
            logger.debug(f"No query registered under {name!r}")
            return None
        window = TimeWindow(start=start, end=end)
        return template.substitute(
            start=window.start.isoformat(),
            end=window.end.isoformat(),
            width=window.width_seconds,
        )


def default_registry() -> QueryRegistry:
    return QueryRegistry({"averageHRPatient1": AVERAGE_HR_PATIENT_1})

import threading
import xmlrpc.client
from datetime import datetime, timezone
from typing import Any
from xml.etree import ElementTree

import requests

from ..config import Config
from ..validators import validate_comment, validate_summary

# Trac's XML-RPC plugin serializes datetimes in UTC without an offset
_XMLRPC_DATETIME_FORMAT = "%Y%m%dT%H:%M:%S"


class TracClient:
    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.rpc_url = f"{config.trac_url.rstrip('/')}/login/rpc"

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        if not hasattr(self._thread_local, "session"):
            session = requests.Session()
            session.auth = (self.config.username, self.config.password)
            session.verify = not self.config.insecure
            self._thread_local.session = session
        return self._thread_local.session

    def _rpc_request(self, service: str, method: str, *params):
        """
        Make an XML-RPC request to the Trac server.

        Raises:
            requests.HTTPError: On a non-2xx response.
            xmlrpc.client.Fault: When the server answers with a fault.
        """
        payload = xmlrpc.client.dumps(params, methodname=f"{service}.{method}")
        response = self._get_session().post(
            self.rpc_url,
            data=payload,
            headers={"Content-Type": "text/xml"},
            timeout=(10, 60),
        )
        response.raise_for_status()

        tree = ElementTree.fromstring(response.content)
        fault = tree.find(".//fault")
        if fault is not None:
            code_el = fault.find('.//member[name="faultCode"]/value/int')
            string_el = fault.find('.//member[name="faultString"]/value/string')
            raise xmlrpc.client.Fault(
                int(code_el.text) if code_el is not None and code_el.text else 0,
                string_el.text
                if string_el is not None and string_el.text
                else "Unknown error",
            )

        value_element = tree.find(".//param/value")
        if value_element is None:
            return None
        return self._parse_xmlrpc_value(value_element)

    def _parse_xmlrpc_value(self, element):
        """
        Recursively parse an XML-RPC value element.
        """
        if len(element) == 0:
            # untyped <value>text</value> is a string
            return element.text or ""

        data_type = element[0].tag
        data_value = element[0].text

        match data_type:
            case "array":
                data_element = element.find("./array/data")
                if data_element is None:
                    return []
                return [
                    self._parse_xmlrpc_value(v)
                    for v in data_element.findall("value")
                ]
            case "struct":
                return {
                    member.find("name").text: self._parse_xmlrpc_value(
                        member.find("value")
                    )
                    for member in element[0].findall("member")
                }
            case "int" | "i4":
                return int(data_value)
            case "boolean":
                return data_value == "1"
            case "string":
                return data_value or ""
            case "double":
                return float(data_value)
            case "dateTime.iso8601":
                return datetime.strptime(
                    data_value.strip(), _XMLRPC_DATETIME_FORMAT
                ).replace(tzinfo=timezone.utc)
            case _:
                return data_value

    # Ticket reads

    def search_tickets(self, query: str) -> list[int]:
        """
        Return ticket ids matching a Trac query string (e.g. ``parent=#12``).
        """
        return self._rpc_request("ticket", "query", query) or []

    def get_ticket(self, ticket_id: int) -> list[Any]:
        """
        Get ticket data as ``[id, created, modified, attributes]``.
        """
        return self._rpc_request("ticket", "get", ticket_id)

    def get_ticket_changelog(self, ticket_id: int) -> list[list[Any]]:
        """
        Get ticket changelog entries.

        Each entry is ``[time, author, field, oldvalue, newvalue, permanent]``;
        for comments ``field`` is ``"comment"`` and ``oldvalue`` holds the
        comment number.
        """
        return self._rpc_request("ticket", "changeLog", ticket_id) or []

    def validate_connection(self) -> str:
        """
        Call system.getAPIVersion() and return it as a string.
        """
        version = self._rpc_request("system", "getAPIVersion")
        return str(version) if version is not None else ""

    # Ticket writes

    def create_ticket(
        self,
        summary: str,
        description: str,
        attributes: dict[str, Any] | None = None,
        notify: bool = False,
    ) -> int:
        """
        Create a new ticket in Trac.

        Args:
            summary: Ticket title (required)
            description: Ticket body with WikiFormatting (may be empty)
            attributes: Extra fields (type, keywords, parent, ...)
            notify: Send email notifications

        Returns:
            Ticket ID (int)

        Raises:
            ValueError: If the summary is empty
            xmlrpc.client.Fault: If server validation fails or permissions denied
        """
        is_valid, error_msg = validate_summary(summary)
        if not is_valid:
            raise ValueError(error_msg)

        attrs: dict[str, Any] = dict(attributes or {})
        attrs.setdefault("type", "task")

        result = self._rpc_request(
            "ticket", "create", summary, description, attrs, notify
        )
        return int(result)

    def update_ticket(
        self,
        ticket_id: int,
        comment: str = "",
        attributes: dict[str, Any] | None = None,
        notify: bool = False,
    ) -> list[Any]:
        """
        Update an existing ticket with optimistic locking.

        The current ``_ts`` is fetched first so Trac rejects the update if
        someone else changed the ticket in between.

        Args:
            ticket_id: Ticket number to update
            comment: Comment to add
            attributes: Fields to update; ``action`` defaults to ``leave``
            notify: Send email notifications

        Returns:
            Updated ticket data [id, created, modified, attributes]

        Raises:
            ValueError: If the comment is too long or the server data is malformed
            xmlrpc.client.Fault: If ticket not found, validation fails, or concurrent update
        """
        if comment:
            is_valid, error_msg = validate_comment(comment)
            if not is_valid:
                raise ValueError(error_msg)

        ticket_data = self.get_ticket(ticket_id)
        if not isinstance(ticket_data, list) or len(ticket_data) < 4:
            raise ValueError("Invalid ticket data format from server")
        current_attrs = ticket_data[3]
        if not isinstance(current_attrs, dict):
            raise ValueError("Invalid ticket attributes format from server")

        update_attrs: dict[str, Any] = dict(attributes or {})
        update_attrs["_ts"] = current_attrs["_ts"]
        update_attrs.setdefault("action", "leave")

        return self._rpc_request(
            "ticket", "update", ticket_id, comment, update_attrs, notify
        )

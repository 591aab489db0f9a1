"""
Built-in node catalogue
"""
import asyncio
import copy
import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ..models.workflow import Item
from ..exceptions import WorkflowValidationError, NodeExecutionError, CancellationRequested
from ..core.registry import NodeRegistry, NodeCapability, NodeContext, FunctionCapability, WaitForResume


logger = logging.getLogger(__name__)

_MISSING = object()


def get_path(data: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Read a dotted path such as 'user.address.city'"""
    current: Any = data
    for part in path.split('.'):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return default
    return current


def set_path(data: Dict[str, Any], path: str, value: Any):
    parts = path.split('.')
    current = data
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


async def passthrough(items: List[Item], parameters: Mapping[str, Any], context: NodeContext):
    """Trigger and noOp nodes forward their input unchanged"""
    return [items]


class SetNode(NodeCapability):
    """Assigns fixed values to every item"""

    def validate_parameters(self, parameters):
        values = parameters.get('values', {})
        if not isinstance(values, Mapping):
            raise WorkflowValidationError("set: 'values' must be a mapping of field paths to values")

    async def execute(self, items, parameters, context):
        values = parameters.get('values', {})
        keep_only_set = bool(parameters.get('keepOnlySet', False))
        results = []
        for index, item in enumerate(items):
            data = {} if keep_only_set else copy.deepcopy(item.json)
            for path, value in values.items():
                set_path(data, path, copy.deepcopy(value))
            results.append(Item(json=data, binary=None if keep_only_set else item.binary, paired_item=index))
        return [results]


OPERATIONS = {
    'equals': lambda actual, expected: actual == expected,
    'notEquals': lambda actual, expected: actual != expected,
    'gt': lambda actual, expected: actual is not None and actual > expected,
    'gte': lambda actual, expected: actual is not None and actual >= expected,
    'lt': lambda actual, expected: actual is not None and actual < expected,
    'lte': lambda actual, expected: actual is not None and actual <= expected,
    'contains': lambda actual, expected: actual is not None and expected in actual,
    'startsWith': lambda actual, expected: isinstance(actual, str) and actual.startswith(expected),
    'endsWith': lambda actual, expected: isinstance(actual, str) and actual.endswith(expected),
    'exists': lambda actual, expected: actual is not _MISSING,
    'notExists': lambda actual, expected: actual is _MISSING,
}


class ConditionNode(NodeCapability):
    """Base for nodes that test items against a list of conditions"""

    node_type = "condition"

    def validate_parameters(self, parameters):
        conditions = parameters.get('conditions')
        if not isinstance(conditions, list) or not conditions:
            raise WorkflowValidationError(f"{self.node_type}: 'conditions' must be a non-empty list")
        for condition in conditions:
            if not isinstance(condition, Mapping) or not condition.get('field'):
                raise WorkflowValidationError(f"{self.node_type}: every condition needs a 'field'")
            if condition.get('operation', 'equals') not in OPERATIONS:
                raise WorkflowValidationError(
                    f"{self.node_type}: unknown operation {condition.get('operation')!r}"
                )
        if parameters.get('combine', 'all') not in ('all', 'any'):
            raise WorkflowValidationError(f"{self.node_type}: 'combine' must be 'all' or 'any'")

    def matches(self, item: Item, parameters: Mapping[str, Any]) -> bool:
        results = []
        for condition in parameters['conditions']:
            actual = get_path(item.json, condition['field'], _MISSING)
            operation = OPERATIONS[condition.get('operation', 'equals')]
            expected = condition.get('value')
            if actual is _MISSING and condition.get('operation') not in ('exists', 'notExists'):
                actual = None
            try:
                results.append(bool(operation(actual, expected)))
            except TypeError:
                results.append(False)
        if parameters.get('combine', 'all') == 'any':
            return any(results)
        return all(results)


class IfNode(ConditionNode):
    """Routes matching items to output 0 and the rest to output 1"""

    node_type = "if"

    async def execute(self, items, parameters, context):
        matched, rest = [], []
        for item in items:
            (matched if self.matches(item, parameters) else rest).append(item)
        return [matched, rest]


class FilterNode(ConditionNode):
    """Keeps only matching items"""

    node_type = "filter"

    async def execute(self, items, parameters, context):
        return [[item for item in items if self.matches(item, parameters)]]


class WaitNode(NodeCapability):
    """Pauses for a fixed time, or until the execution is resumed externally"""

    def validate_parameters(self, parameters):
        resume = parameters.get('resume', 'timeInterval')
        if resume not in ('timeInterval', 'webhook'):
            raise WorkflowValidationError("wait: 'resume' must be 'timeInterval' or 'webhook'")
        if resume == 'timeInterval':
            seconds = parameters.get('seconds', 0)
            if not isinstance(seconds, (int, float)) or seconds < 0:
                raise WorkflowValidationError("wait: 'seconds' must be a non-negative number")
        timeout = parameters.get('timeout')
        if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
            raise WorkflowValidationError("wait: 'timeout' must be a positive number")

    async def execute(self, items, parameters, context):
        if parameters.get('resume', 'timeInterval') == 'webhook':
            return WaitForResume(timeout=parameters.get('timeout'))

        seconds = float(parameters.get('seconds', 0))
        if context.cancel_event is None:
            await asyncio.sleep(seconds)
        else:
            try:
                await asyncio.wait_for(context.cancel_event.wait(), timeout=seconds)
                raise CancellationRequested(f"Wait in node '{context.node_id}' interrupted")
            except asyncio.TimeoutError:
                pass
        return [items]


HTTP_METHODS = ('GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'HEAD', 'OPTIONS')


class HttpRequestNode(NodeCapability):
    """Issues one HTTP request per input item"""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    def validate_parameters(self, parameters):
        url = parameters.get('url')
        if not isinstance(url, str) or not url.startswith(('http://', 'https://')):
            raise WorkflowValidationError("httpRequest: 'url' must be an http(s) URL")
        if str(parameters.get('method', 'GET')).upper() not in HTTP_METHODS:
            raise WorkflowValidationError(f"httpRequest: unsupported method {parameters.get('method')!r}")

    async def execute(self, items, parameters, context):
        method = str(parameters.get('method', 'GET')).upper()
        timeout = float(parameters.get('timeout', 30.0))
        send_item = bool(parameters.get('sendItemAsBody', False))
        fail_on_status = not parameters.get('ignoreHttpErrors', False)

        if not items:
            return [[]]

        results = []
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            for index, item in enumerate(items):
                body = item.json if send_item else parameters.get('body')
                response = await client.request(
                    method,
                    parameters['url'],
                    params=dict(parameters.get('query', {})),
                    headers=dict(parameters.get('headers', {})),
                    json=body if method not in ('GET', 'HEAD') else None,
                )
                if fail_on_status and response.status_code >= 400:
                    raise NodeExecutionError(
                        context.node_id,
                        f"{method} {parameters['url']} returned HTTP {response.status_code}"
                    )
                results.append(Item(json=self._response_json(response), paired_item=index))
                context.logger.debug(f"{method} {parameters['url']} -> {response.status_code}")
        return [results]

    @staticmethod
    def _response_json(response: httpx.Response) -> Dict[str, Any]:
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        return {
            "statusCode": response.status_code,
            "headers": dict(response.headers),
            "body": body,
        }


def register_builtin_nodes(registry: NodeRegistry) -> NodeRegistry:
    """Register the built-in catalogue"""
    for node_type in ('manualTrigger', 'webhook', 'scheduleTrigger', 'noOp'):
        registry.register(node_type, FunctionCapability(passthrough))
    registry.register('set', SetNode())
    registry.register('if', IfNode())
    registry.register('filter', FilterNode())
    registry.register('wait', WaitNode())
    registry.register('httpRequest', HttpRequestNode())
    logger.debug(f"Registered {len(registry)} built-in node types")
    return registry

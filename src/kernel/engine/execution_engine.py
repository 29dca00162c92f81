"""
Module: execution_engine.py
Location: src/kernel/engine/

Accepts code, decides how to compile it, runs it, collects side data and
builds the execute_reply content.

The engine owns the execution counter, the execution payload and (as the
only writer) the history store. Other components read them through the
narrow accessors below or through remote attributes.
"""

from __future__ import annotations

import builtins
import contextlib
import linecache
import traceback
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from src.kernel.channels.broadcast import Broadcaster, NullBroadcaster
from src.kernel.channels.input_channel import InputChannel
from src.kernel.engine.code_splitter import ECHO_SINK_NAME, compile_statements, plan_execution
from src.kernel.engine.directives import DirectiveRegistry, default_directives
from src.kernel.engine.display import DisplayFormatter, EchoSink, NullSink
from src.kernel.engine.execution_state_machine import ExecutionStateMachine, StateTransitionEvent
from src.kernel.engine.hooks import HookFailure, HookSet
from src.kernel.engine.input_transformer import (
    AUTOCALL_FULL,
    AUTOCALL_OFF,
    DIRECTIVE_CALL_NAME,
    InputTransformer,
)
from src.kernel.engine.introspection import Introspector
from src.kernel.engine.out_stream import OutStream
from src.kernel.gateway.remote_attribute import RemoteAttribute
from src.kernel.history.history_store import HistoryStore
from src.kernel.kernel_exceptions import InputAbandoned
from src.kernel.logging.log_manager import Logger, null_logger
from src.kernel.logging.message_context import MessageContext
from src.kernel.messages.envelope import Envelope
from src.kernel.messages.message_types import ExecutionStatus


def format_inline_error(exc: BaseException) -> str:
    return f"[ERROR] {type(exc).__name__}: {exc}"


class ExecutionEngine:
    def __init__(
        self,
        *,
        broadcaster: Optional[Broadcaster] = None,
        history: Optional[HistoryStore] = None,
        input_channel: Optional[InputChannel] = None,
        logger: Optional[Logger] = None,
        directives: Optional[DirectiveRegistry] = None,
        formatter: Optional[DisplayFormatter] = None,
        autocall: int = 1,
    ):
        self._broadcaster = broadcaster or NullBroadcaster()
        self.history = history or HistoryStore()
        self._input_channel = input_channel
        self._log = logger or null_logger("ENGINE")
        self._directives = directives or default_directives()
        self._formatter = formatter or DisplayFormatter()
        self._transformer = InputTransformer()
        self.autocall = autocall

        self._sm = ExecutionStateMachine()
        self._execution_count = 0
        self._payload: Dict[str, Any] = {}

        self.pre_execute = HookSet("pre_execute")
        self.post_execute = HookSet("post_execute")

        # Request being served; set for the duration of execute()
        self._parent: Optional[Envelope] = None
        self._idents: List[bytes] = []

        self.user_ns: Dict[str, Any] = {}
        self._hidden_names: frozenset = frozenset()
        self.reset_namespace()
        self._introspector = Introspector(self.user_ns)

    # -------------------------------------------------
    # Read-only views
    # -------------------------------------------------
    @property
    def execution_count(self) -> int:
        return self._execution_count

    @property
    def state(self) -> str:
        return self._sm.state.value

    @property
    def busy(self) -> bool:
        return self._sm.busy

    @property
    def payload(self) -> Dict[str, Any]:
        """Payload of the request being executed; directives write here."""
        return self._payload

    @property
    def autocall(self) -> int:
        return self._transformer.autocall

    @autocall.setter
    def autocall(self, level: int) -> None:
        self._transformer.autocall = _validate_autocall(level)

    # -------------------------------------------------
    # Namespace
    # -------------------------------------------------
    def reset_namespace(self) -> None:
        # %reset may run mid-cell; the echo sink must survive it
        sink = self.user_ns.get(ECHO_SINK_NAME)
        self.user_ns.clear()
        if sink is not None:
            self.user_ns[ECHO_SINK_NAME] = sink
        self.user_ns.update(
            {
                "__name__": "__main__",
                "__builtins__": builtins,
                "input": self._raw_input,
                "raw_input": self._raw_input,
                "display": self.display,
                DIRECTIVE_CALL_NAME: self._run_directive,
            }
        )
        self._hidden_names = frozenset(self.user_ns)

    def user_names(self) -> List[str]:
        return sorted(
            name for name in self.user_ns
            if name not in self._hidden_names and not name.startswith("_")
        )

    def register_post_execute(self, func: Callable[[], object], name: Optional[str] = None) -> int:
        return self.post_execute.register(func, name)

    # -------------------------------------------------
    # Callables injected into the user namespace
    # -------------------------------------------------
    def _raw_input(self, prompt: str = "") -> str:
        if self._input_channel is None or self._parent is None:
            raise InputAbandoned("No frontend can answer input requests")
        return self._input_channel.request_input(str(prompt), self._parent, self._idents)

    def _run_directive(self, name: str, args: str) -> object:
        return self._directives.run(self, name, args)

    def display(self, *objs: Any) -> None:
        """Publish each object as display_data, independently of the execution count."""
        for obj in objs:
            self._publish(
                "display_data",
                {"source": "display", "data": self._formatter.format(obj), "metadata": {}},
            )

    # -------------------------------------------------
    # Execution
    # -------------------------------------------------
    def execute(
        self,
        code: str,
        *,
        silent: bool = False,
        user_variables: Iterable[str] = (),
        user_expressions: Optional[Mapping[str, str]] = None,
        parent: Optional[Envelope] = None,
        idents: Optional[List[bytes]] = None,
    ) -> Dict[str, Any]:
        """
        Run one execute request and return the execute_reply content.

        Always announces busy then idle on the broadcast channel, whatever
        the outcome.
        """
        self._parent = parent
        self._idents = list(idents or [])
        ctx = MessageContext.from_header(parent.header, parent.parent_header) if parent else None

        self._log_transition(self._sm.on_begin(parent.msg_id if parent else ""), ctx)
        self._publish("status", {"execution_state": "busy"})
        reply: Dict[str, Any] = {"status": ExecutionStatus.ERROR.value, "execution_count": self._execution_count}
        try:
            if silent:
                reply = self._execute_silent(code, ctx)
            else:
                reply = self._execute_interactive(code, list(user_variables), dict(user_expressions or {}), ctx)
        finally:
            self._log_transition(self._sm.on_finish(reply["status"]), ctx)
            self._publish("status", {"execution_state": "idle"})
            self._parent = None
            self._idents = []
        return reply

    def _execute_silent(self, code: str, ctx: Optional[MessageContext]) -> Dict[str, Any]:
        count = self._execution_count
        self._payload = {}
        filename = "<kernel-input-silent>"
        try:
            code_obj = compile(code, filename, "exec")
            _register_source(filename, code)
            with self._capture_streams():
                exec(code_obj, self.user_ns)
        except KeyboardInterrupt:
            self._log.warning(event_type="EXECUTE_ABORTED", message="Silent execution interrupted", context=ctx)
            return {"status": ExecutionStatus.ABORT.value, "execution_count": count}
        except (Exception, SystemExit) as e:
            self._log.info(event_type="EXECUTE_ERROR", message=format_inline_error(e), context=ctx)
            return {"status": ExecutionStatus.ERROR.value, "execution_count": count, **self._format_error(e)}

        return {
            "status": ExecutionStatus.OK.value,
            "execution_count": count,
            "payload": {},
            "user_variables": {},
            "user_expressions": {},
            "transformed_code": "",
        }

    def _execute_interactive(
        self,
        code: str,
        user_variables: List[str],
        user_expressions: Dict[str, str],
        ctx: Optional[MessageContext],
    ) -> Dict[str, Any]:
        self._execution_count += 1
        count = self._execution_count
        self._payload = {}
        self._publish("pyin", {"code": code, "execution_count": count})

        filename = f"<kernel-input-{count}>"
        transformed_code = code
        sink = EchoSink(publish=self._publish, execution_count=count, user_ns=self.user_ns, formatter=self._formatter)
        # Hooks and user expressions run user code too; an interrupt anywhere aborts
        try:
            self._report_hook_failures(self.pre_execute.run_all(), "pre_execute", ctx)
            try:
                transformed = self._transformer.transform_cell(code, self.user_ns)
                transformed_code = transformed.code
                self._run_cell(transformed.code, filename, sink)
            except (Exception, SystemExit) as e:
                error = self._format_error(e)
                self._publish("pyerr", {"execution_count": count, **error})
                self.history.append(count, code, transformed_code)
                self._log.info(
                    event_type="EXECUTE_ERROR",
                    message=format_inline_error(e),
                    context=ctx,
                    payload={"execution_count": count},
                )
                return {"status": ExecutionStatus.ERROR.value, "execution_count": count, **error}

            variables = {name: self._safe_repr(lambda n=name: self._lookup(n)) for name in user_variables}
            expressions = {
                key: self._safe_repr(lambda e=expr: eval(e, self.user_ns))
                for key, expr in user_expressions.items()
            }
            self._report_hook_failures(self.post_execute.run_all(), "post_execute", ctx)
        except KeyboardInterrupt:
            self._payload = {}
            self._log.warning(
                event_type="EXECUTE_ABORTED",
                message="Execution interrupted",
                context=ctx,
                payload={"execution_count": count},
            )
            return {"status": ExecutionStatus.ABORT.value, "execution_count": count}

        self.history.append(count, code, transformed_code, output=sink.last_text)

        payload = self._payload
        self._payload = {}
        self._log.debug(
            event_type="EXECUTE_OK",
            message="Execution finished",
            context=ctx,
            payload={"execution_count": count, "echoed": sink.emitted},
        )
        return {
            "status": ExecutionStatus.OK.value,
            "execution_count": count,
            "payload": payload,
            "user_variables": variables,
            "user_expressions": expressions,
            "transformed_code": transformed.reported_code if transformed.autocall_applied else "",
        }

    def _run_cell(self, code: str, filename: str, sink: EchoSink) -> None:
        plan = plan_execution(code, filename)
        _register_source(filename, code)

        # Compile everything before running anything
        no_echo = compile_statements(plan.no_echo, filename, echo=False)
        echo = compile_statements(plan.echo, filename, echo=True)

        with self._capture_streams():
            if no_echo is not None:
                self.user_ns[ECHO_SINK_NAME] = NullSink().emit
                try:
                    exec(no_echo, self.user_ns)
                finally:
                    self.user_ns.pop(ECHO_SINK_NAME, None)
            if echo is not None:
                self.user_ns[ECHO_SINK_NAME] = sink.emit
                try:
                    exec(echo, self.user_ns)
                finally:
                    self.user_ns.pop(ECHO_SINK_NAME, None)

    @contextlib.contextmanager
    def _capture_streams(self):
        stdout = OutStream("stdout", self._publish)
        stderr = OutStream("stderr", self._publish)
        try:
            with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
                yield
        finally:
            stdout.flush()
            stderr.flush()

    # -------------------------------------------------
    # Helpers
    # -------------------------------------------------
    def _publish(self, msg_type: str, content: dict) -> None:
        self._broadcaster.publish(msg_type, content, parent=self._parent)

    def _log_transition(self, event: StateTransitionEvent, ctx: Optional[MessageContext]) -> None:
        self._log.trace(
            event_type="EXEC_STATE_TRANSITION",
            message=f"{event.old_state} -> {event.new_state}",
            context=ctx,
            payload={"reason": event.reason, "msg_id": event.msg_id},
        )

    def _lookup(self, name: str) -> Any:
        try:
            return self.user_ns[name]
        except KeyError:
            raise NameError(f"name '{name}' is not defined") from None

    @staticmethod
    def _safe_repr(thunk: Callable[[], Any]) -> str:
        try:
            return repr(thunk())
        except Exception as e:
            return format_inline_error(e)

    def _report_hook_failures(self, failures: List[HookFailure], label: str, ctx: Optional[MessageContext]) -> None:
        for failure in failures:
            self._publish(
                "stream",
                {"name": "stderr", "data": f"{failure.as_error_string()} ({label} hook '{failure.name}' removed)\n"},
            )
            self._log.warning(
                event_type="HOOK_REMOVED",
                message=f"{label} hook {failure.name} failed and was removed",
                context=ctx,
                payload={"hook": failure.name, "ename": failure.ename, "evalue": failure.evalue},
            )

    @staticmethod
    def _format_error(exc: BaseException) -> Dict[str, Any]:
        # SyntaxError carries its own location; its frames are all parser frames
        tb = None if isinstance(exc, SyntaxError) else exc.__traceback__
        # Drop the engine's own frames so the traceback starts in user code
        while tb is not None and tb.tb_frame.f_code.co_filename == __file__:
            tb = tb.tb_next
        lines = traceback.format_exception(type(exc), exc, tb)
        return {
            "ename": type(exc).__name__,
            "evalue": str(exc),
            "traceback": [line.rstrip("\n") for line in lines],
        }

    # -------------------------------------------------
    # Introspection requests
    # -------------------------------------------------
    def object_info(self, oname: str) -> Dict[str, Any]:
        return self._introspector.object_info(oname)

    def complete(self, text: str, line: str = "", cursor_pos: Optional[int] = None) -> Dict[str, Any]:
        return self._introspector.complete(text, line, cursor_pos)

    # -------------------------------------------------
    # Remote attributes
    # -------------------------------------------------
    def remote_attributes(self) -> List[RemoteAttribute]:
        return [
            RemoteAttribute("execution_count", getter=lambda: self.execution_count,
                            doc="Number of non-silent executions so far."),
            RemoteAttribute("state", getter=lambda: self.state, doc="idle or busy."),
            RemoteAttribute(
                "autocall",
                getter=lambda: self.autocall,
                setter=lambda v: setattr(self, "autocall", v),
                validator=_validate_autocall,
                doc="Auto-invocation level: 0 off, 1 smart, 2 full.",
            ),
        ]


def _validate_autocall(level: Any) -> int:
    if isinstance(level, bool) or not isinstance(level, int):
        raise TypeError(f"autocall must be an int, got {type(level).__name__}")
    if not AUTOCALL_OFF <= level <= AUTOCALL_FULL:
        raise ValueError(f"autocall must be between {AUTOCALL_OFF} and {AUTOCALL_FULL}, got {level}")
    return level


def _register_source(filename: str, code: str) -> None:
    """Make cell source visible to traceback formatting."""
    linecache.cache[filename] = (len(code), None, code.splitlines(True), filename)

"""Turn orchestration engine for long-running CLI coding agents.

One foreground loop owns exactly one agent subprocess per turn.  Each turn
is supervised (polled, killable), its raw output classified into a closed
set of outcomes, transient failures retried with bounded backoff, and the
resulting payload routed through a phase machine before durable state is
persisted for resume.

Two workflows share this machinery:

- ``build``: execute items from a task list until the agent reports that
  every item is complete, a loop ceiling is hit, or the user stops.
- ``plan``: interview the user across turns until the agent emits the final
  task list, persisting session state after every turn.
"""

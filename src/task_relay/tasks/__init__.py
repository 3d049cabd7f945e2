"""Task persistence and synchronization.

The store keeps the whole task collection in memory and mirrors it into a
single JSON document (``<project>/tasks/tasks.json``). Another process (an
agent updating its own task status, an editor, a second CLI) may rewrite
that document at any time; the store reconciles such edits in two places:

- the watcher reloads the file after external writes settle;
- every save merges external edits it has not seen yet, record by record,
  keeping whichever side has the later ``metadata.last_modified``.
"""

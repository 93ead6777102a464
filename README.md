# cctrack

cctrack reads the JSONL session logs that Claude Code writes under
`~/.claude/projects/` (subagent logs included), works out what every
request cost, and serves the results as a JSON API with live updates over a
WebSocket.

## What it reports

- Spend and token counts today, this week (from Sunday) and this month, each
  measured from local midnight, plus a projection of the month's total from
  the spend so far.
- Daily spend over the last 14 days (grouped by UTC date) and spend by local
  hour of day, for all models together and for each model separately.
- Cost split into input, output, cache-write and cache-read tokens.
- Cost and session count per model, with each model's share of the total.
- An activity heatmap of local hour of day against day of week
  (0 is Sunday).
- Sessions ordered by when they were last active; the overview holds the 20
  most recent.
- Projects with their cost, sessions and models. A project is named by the
  last two components of its working directory. A workspace that holds
  several git repositories is split into subprojects, worked out from the
  file paths each request touched. A request that touched no repository
  takes the subprojects of the session's previous request, or else all the
  session's subprojects, or else `(workspace)`. A request attributed to
  several subprojects has its cost shared evenly between them.

Streamed responses are counted once: only the last assistant event for each
request id is kept, and a request that shows up in more than one file is
counted only the first time it is read.

## Pricing

Prices are in US dollars per million tokens. Model names are matched after
any trailing eight-digit date suffix is removed.

| Model family | Input | Output | Cache write | Cache read |
|--------------|------:|-------:|------------:|-----------:|
| opus         | 15.00 |  75.00 |       18.75 |       1.50 |
| sonnet       |  3.00 |  15.00 |        3.75 |       0.30 |
| haiku        |  0.80 |   4.00 |        1.00 |       0.08 |

A model that matches none of these is priced as sonnet.

## Installing

```
pip install .
```

## Running

```
cctrack
cctrack --host 127.0.0.1 --port 9000
```

By default the server listens on `0.0.0.0:8080`. It scans the logs under
`$HOME/.claude/projects/` once when it starts, then watches that directory
and scans again whenever a `.jsonl` file is created, changed or moved into
place. Changes that arrive within 300 ms of each other trigger a single
scan. If the directory does not exist when the server starts, the watcher
logs an error and the server keeps serving the records it loaded.

### Endpoints

| Path             | Returns                                                     |
|------------------|-------------------------------------------------------------|
| `/api/overview`  | The full overview                                           |
| `/api/sessions`  | Every session, most recently active first                   |
| `/api/projects`  | Projects and subprojects, highest cost first                |
| `/api/rate-card` | The price table above                                       |
| `/ws`            | A WebSocket that sends the overview on connect and again after each scan |

Every endpoint allows requests from any origin. A WebSocket client that
falls behind loses its oldest pending updates rather than slowing the
server down.

## Using it as a library

```python
from pathlib import Path

from cctrack.api import build_overview, build_projects
from cctrack.models import AppState, to_jsonable
from cctrack.parser import scan_all_records

state = AppState(records=scan_all_records(Path.home()))
overview = build_overview(state)
print(to_jsonable(overview)["month"]["cost"])
for project in build_projects(state):
    print(project.name, round(project.total_cost, 2))
```

- `cctrack.parser` — `scan_all_records`, `parse_jsonl_file` and the
  subproject attribution helpers.
- `cctrack.api` — `build_overview`, `build_sessions`, `build_projects`.
- `cctrack.cost` — `get_pricing`, `normalize_model`, `calculate_cost`,
  `rate_card`.
- `cctrack.models` — the record and response dataclasses and `to_jsonable`.
- `cctrack.server` — `create_app` and `main`.

## What it does not do

cctrack serves data only. It has no web page or charts of its own; a
dashboard has to be built on top of the JSON API and the WebSocket. It keeps
nothing on disk: every start, and every change to the logs, reads all the
logs again.

## Running the tests

```
pip install ".[test]"
pytest
```
# phmisp

`phmisp` is a library of the pieces a service needs to take cases coming
from TheHive, filter them with a set of rules and keep track of them for
MISP: in-memory state, a `caseId -> eventId` map in Redis, a small MISP
HTTP client and health reporting to Zabbix.

## Modules

| Module | Purpose |
| --- | --- |
| `phmisp.rules` | Loads a YAML rule file (`RULES` with `PASSANY`, `PASS`, `REPLACE`, `EXCLUDE`) and applies the rules to field values. |
| `phmisp.storage` | Thread-safe in-memory storage for raw and parsed TheHive messages, temporary cases, MISP user settings and event counters, with a periodic cleaner. |
| `phmisp.misp_client` | A small HTTP client for the MISP API (`MispClient`, `MispError`). |
| `phmisp.misp_auth` | Keeps MISP users and organisations in memory and maps case sources to MISP organisations. |
| `phmisp.redis_handler` | Stores and looks up `caseId -> eventId` pairs in Redis. |
| `phmisp.zabbix` | Sends values to a Zabbix trapper with the Zabbix sender protocol, with optional periodic handshake messages. |
| `phmisp.textutils` | Helpers: hash type detection, version extraction, readable dumps of JSON documents and more. |
| `phmisp.datetimeutils` | Difference between two moments as days, hours, minutes and seconds. |

## Rules

A rule file looks like this:

```yaml
RULES:
  PASSANY: false
  PASS:
    - listAnd:
        - searchField: event.object.resolutionStatus
          searchValue: TruePositive
        - searchField: event.object.tlp
          searchValue: "not:3"
  REPLACE:
    - searchField: source
      searchValue: gcm
      replaceValue: GCM
  EXCLUDE:
    - listAnd:
        - searchField: observables.dataType
          searchValue: ip_home
          accurateComparison: true
```

```python
from phmisp.rules import load_rules

rules, warnings = load_rules("rules/mispmsgrule.yaml")

rules.clean_statement_expression_rule_pass()
rules.pass_rule_handler("event.object.resolutionStatus", "TruePositive")
rules.pass_rule_handler("event.object.tlp", 2)
if rules.some_pass_rule_is_true():
    ...

value, index = rules.replacement_rule_handler("string", "source", "gcm")  # ("GCM", 0)
address = rules.exclude_rule_handler("observables.dataType", "ip_home")  # (0, 0)
```

Inside one `listAnd` block every rule must match; between blocks one
matching block is enough. A `searchValue` starting with `not:` matches
any value other than the one that follows. An exclude rule with
`accurateComparison` needs an exact match, otherwise the search value only
has to be contained in the field value. `replacement_rule_handler`
converts the replacement to the requested type (`string`, `int`, `uint`,
`float`, `bool`) and raises `RuleError` when that fails.

`load_rules` reads a file by path; `new_list_rule(root_dir, work_dir,
file_name)` finds it under the application root directory. A file without
`RULES` raises `RuleError`. Both run `ListRule.verification`, which drops
rules with empty fields and returns a warning for each one.
`ListRule.from_mapping` builds rules from an already decoded document.

## Small helpers

```python
from datetime import datetime

from phmisp.datetimeutils import get_difference
from phmisp.textutils import check_string_hash, get_app_version, read_reflect_json_sprint

days, hours, minutes, seconds = get_difference(
    datetime(2020, 4, 27, 23, 35, 0), datetime(2020, 4, 29, 1, 36, 5)
)

hash_type, size = check_string_hash("7c531394dc2f483bc6c6c628c02e0788")  # ("md5", 32)

version = get_app_version("placeholder_misp v1.4.2")  # "v1.4.2"

print(read_reflect_json_sprint(b'{"case": {"id": 33705}}'))
```

`check_string_hash` recognises md5, sha1, sha256 and sha512 by length,
returns `"other"` for any other length and raises `ValueError` for a value
that is not hexadecimal. `read_reflect_json_sprint` raises `ValueError`
for an empty document or one that is neither an object nor an array.

## Temporary storage

```python
from phmisp.storage import SettingsInputCase, new_temporary_storage

storage = new_temporary_storage()
storage.set_raw_data("a1b2", b"raw case from TheHive")
storage.set_allowed_transfer("a1b2", True)
storage.set_temporary_case(33705, SettingsInputCase(event_id="7418"))
storage.add_accepted_events(1)
print(storage.count_hive_messages(), storage.data_counter())
```

`new_temporary_storage` returns one shared `TemporaryStorage` and starts
its background cleaner; a `TemporaryStorage()` created directly has none
until `start_cleaner` is called (setting the event it returns stops it).
`cleanup` removes a message once it has been marked processed by MISP,
Elasticsearch and NKCKI (`mark_processed_misp`,
`mark_processed_elasticsearch`, `mark_processed_nkcki`), and temporary
cases fifteen hours after they were stored. Getters return `None` for
unknown keys.

## MISP

```python
from phmisp.misp_auth import AuthorizationStorage, MispAuthorization
from phmisp.misp_client import MispClient

client = MispClient("misp.example.com", "placeholder", False)
auth = MispAuthorization(client, AuthorizationStorage())
auth.load_organisations([("GCM", "gcm"), ("CFO-RCM", "rcmmsk")])
print(auth.storage.get_organisation_options("gcm"))
```

`MispClient` sends `get`, `post` and `delete` requests with the key in the
`Authorization` header and returns the response body. A response other
than HTTP 200, or a failure to reach the host, raises `MispError`, which
carries the status and body when there was a response.

`AuthorizationStorage` holds users (`UserSettings`, refused when a user
with the same id or e-mail is already stored) and organisations
(`OrganisationOptions`) keyed by case source name.

## Redis

```python
from phmisp.redis_handler import RedisHandler

handler = RedisHandler.connect("localhost", 6379)
handler.set_case_id("33705:7418")
result = handler.search_case_id("33705")  # RedisResult("found caseId", "7418")
```

`set_case_id` returns a `RedisResult("found event id", old_id)` when the
case already had an event, so that the old event can be removed.
`process(command, data)` accepts the command names `"search caseId"` and
`"set case id"` and returns a list of results.

## Zabbix

```python
from phmisp.zabbix import EventType, Handshake, MessageSettings, ZabbixConnectionSettings, ZabbixSender

sender = ZabbixSender(ZabbixConnectionSettings(port=10051, host="zabbix.example.com", zabbix_host="monitored-host"))
sender.run(
    [
        EventType(True, "error", "placeholder_misp.error"),
        EventType(True, "handshake", "placeholder_misp.handshake", Handshake(1, "I'm still alive")),
    ],
    [MessageSettings("ERROR: test error message", "error")],
)
...
sender.stop()
```

`send_data` opens a connection for each call and returns the number of
bytes written; `build_packet` builds the packet alone. `run` routes each
message to the worker of its event type, and workers with a handshake send
its message every `time_interval` minutes. Send errors from the workers
are put on `sender.errors`.

## What this package does not do

- It has no command and runs no service: it provides the parts, and wiring
  them to TheHive and MISP is left to the application.
- It does not build or send MISP events, attributes, objects, reports or
  tags. `MispAuthorization` loads organisations and can drop a stored user
  with `delete_user_data`, but does not fetch the MISP user list or create
  users.
- It has no NATS client.
- `RedisHandler` does not store or return raw cases; commands other than
  the two above produce no results.
- It does not read the application configuration file.
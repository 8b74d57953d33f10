# dnschain

`dnschain` is a library of DNS resolvers that you link into a chain. A
request goes to the first resolver. That resolver either answers it or
passes it on to the next one. Each resolver does one job:

| Module          | Resolver                         | What it does                                                          |
|-----------------|----------------------------------|-----------------------------------------------------------------------|
| `chain`         | `NoOpResolver`                   | ends a branch and returns the empty marker response `NO_RESPONSE`     |
| `fqdn_only`     | `FqdnOnlyResolver`               | when enabled, answers NXDOMAIN for names without a dot                |
| `filtering`     | `FilteringResolver`              | answers an empty NOERROR reply for the query types you configure      |
| `sudn`          | `SpecialUseDomainNamesResolver`  | handles special-use names (`localhost.`, `test.`, `invalid.`, `local.`, private reverse zones) |
| `custom_dns`    | `CustomDNSResolver`              | answers from a fixed domain → IP mapping, subdomains and reverse lookups included |
| `hosts_file`    | `HostsFileResolver`              | answers from a hosts file, optionally rereading it periodically       |
| `rewriter`      | `RewriterResolver`               | rewrites domain suffixes before passing the query to an inner resolver |
| `conditional`   | `ConditionalUpstreamResolver`    | sends chosen domains to dedicated upstream servers                    |
| `client_names`  | `ClientNamesResolver`            | sets client names from a client id, an IP mapping or reverse DNS      |
| `parallel`      | `ParallelBestResolver`           | asks two weighted-random upstreams and uses the first good answer     |
| `upstream`      | `UpstreamResolver`               | forwards over UDP/TCP, DNS-over-TLS or DNS-over-HTTPS                 |
| `ede`           | `EdeResolver`                    | adds an Extended DNS Error option carrying the response's reason      |
| `metrics`       | `MetricsResolver`                | counts queries, responses and errors and records durations            |
| `query_logging` | `QueryLoggingResolver`           | hands each answered query to a log writer in a background thread      |

## Installation

```
pip install dnschain
```

## Building a chain

```python
import dns.rdatatype

from dnschain.chain import chain, name
from dnschain.custom_dns import CustomDNSResolver
from dnschain.fqdn_only import FqdnOnlyResolver
from dnschain.model import new_request
from dnschain.sudn import SpecialUseDomainNamesResolver

resolver = chain(
    FqdnOnlyResolver(enabled=True),
    SpecialUseDomainNamesResolver(),
    CustomDNSResolver({"nas.home": ["192.168.1.10"]}, ttl=300),
)

response = resolver.resolve(new_request("nas.home.", dns.rdatatype.A))
print(response.rtype, response.reason, response.res.answer)
print(name(resolver))
```

`chain(*resolvers)` sets each `ChainedResolver`'s `next` to the resolver
after it and returns the first one. A `ChainedResolver` with no `next`
raises `RuntimeError` when it has to pass a request on, so end a chain with
a resolver that always answers (for example a `ParallelBestResolver`).
`name(resolver)` returns a readable name, and every resolver's
`configuration()` returns its settings as a list of lines.

## Requests and responses

`dnschain.model` defines `Request`, `Response`, `ResponseType` and
`RequestProtocol`, with helpers:

- `new_request(question, qtype, client_ip=None, client_names=(), request_client_id="")`
- `new_response_msg(request)`: an empty reply to the request's message
- `extract_domain(question)`: the question name in lower case, without the trailing dot
- `create_header(question, ttl)` and `create_answer_from_question(question, ip, ttl)`
  (A and AAAA only; other types raise `ValueError`)
- `answer_to_string(answer)`: a compact text form of answer records

A `Response` holds the dnspython message in `res`, a `ResponseType` in
`rtype` and a text `reason`.

## Local answers

- `CustomDNSResolver(mapping, ttl=0, filter_unmapped_types=False)`: when a
  name is mapped but has no address of the requested type, it answers an
  empty NOERROR if `filter_unmapped_types` is set, and otherwise passes the
  query on. `is_supported_type(ip, question)` tells whether an address fits
  an A or AAAA question.
- `HostsFileResolver(hosts_file_path, ttl=0, refresh_period=0, filter_loopback=False)`:
  if the file cannot be read, the resolver turns itself off and passes every
  query on. With a positive `refresh_period` (seconds) it rereads the file in
  a background thread; `reload()`, `start_refresh()` and `stop_refresh()`
  control this. `parse_hosts(text, filter_loopback)` returns `Host` entries.
- `new_rewriter_resolver(rewrite, inner, fallback_upstream=False)` wraps
  `inner` in a `RewriterResolver` (or returns `inner` unchanged when
  `rewrite` is empty). The inner branch sees rewritten names; the names are
  put back in its answer. When the branch gives no response, or (with
  `fallback_upstream`) no answer or an error, the query continues down the
  normal chain with its original name.

## Upstreams

`Upstream.parse` reads addresses such as `1.1.1.1`, `tcp-tls:dns.example:853`
or `https://dns.example/dns-query`. `UpstreamResolver(upstream, timeout=2.0,
user_agent="", check_upstream=True, verify_tls=True, transport=None)` sends
requests to that server, trying three times in all when a request times out.
Host names are looked up with the system resolver. Failures raise
`UpstreamError`, whose `timeout` attribute tells whether it was a timeout.

`ParallelBestResolver` takes a mapping of group names to upstreams (or
ready resolvers). A group can be named after a client (shell-style
wildcards), an IP address, a CIDR range, or `default`, which is required.
`client_name_matches_group` and `cidr_contains_ip` decide which groups apply;
`pick_random` prefers resolvers without recent errors.

`ConditionalUpstreamResolver` maps domains to upstream lists; a key matches
the domain and its subdomains, and the key `"."` matches names without a dot.

## Client names, metrics and query logs

- `ClientNamesResolver(upstream=None, single_name_order=(), client_ip_mapping=None)`
  caches looked-up names for an hour; `flush_cache()` clears the cache.
  `extract_client_names(answer, fallback_ip)` reads PTR targets.
- `MetricsResolver(enable, path="/metrics")` keeps its figures in memory in
  `total_queries`, `total_response`, `total_errors` (`Counter`) and
  `duration_histogram` (`Histogram`).
- `QueryLoggingResolver(log_type, target, log_retention_days, writer_factories=...)`
  writes through `LoggerWriter` (the `dnschain.query_log` logger) or
  `NoneWriter`. Call `close()` or use it as a context manager to stop its
  threads.

## What the package does not do

It has no DNS server that listens for clients and no command-line program;
you call `resolve` yourself. It has no block lists and no response cache.
Metrics are not served over HTTP. For the `csv`, `csv-client`, `mysql` and
`postgresql` query log types no writer is built in: pass your own through
`writer_factories`, otherwise the resolver falls back to the console writer.

## Testing

```
pip install -e ".[test]"
pytest
```
"""
Access Service application package.

Mediates access requests between a relying party and a credential holder.
It provides:

- main: API surface for access requests, the policy catalog and SSE events.
- conditions: condition trees, their parser and the evaluator.
- requests: the access request aggregate, stores and state machine.
- credentials: verification and lookup of presented credentials.
- events: in-process publication of access request changes.
"""

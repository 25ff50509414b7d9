"""
Credential collaborators: the verifier client and the credential store.
Verification and issuance live in other services; this package only
talks to them.
"""

"""Authentication and authorization core.

Learn: Tokens are minted by the issuer (the only holder of the signing
key), checked by the verifier, and invalidated through the revocation
store. The gate combines all of that with the session registry and the
principal directory into one admit/reject decision per request.

Every request that reaches a protected route resolves to an
IdentityContext: principal + session id + device id.
"""

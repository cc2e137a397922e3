"""nomadcert: signed residency certificates for day-by-day country logs.

The service builds a manifest of one year of a traveler's residency logs plus
recent audit evidence, signs its RFC 8785 canonical form with RSA, and lets any
third party check the exported document offline against the published key.
"""

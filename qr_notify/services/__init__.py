"""
                        Services Module

Contains the business logic behind the notify endpoint.
Services with external dependencies have Mock (development) and Real
(production) implementations.

Services:
    - admission: origin, fetch-metadata, rate-limit and body gates
    - locations: static allow-list or catalog-backed location lookup
    - notifications: Pushover order alerts
"""

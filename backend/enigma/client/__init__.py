"""Client-side session core: local session context, timed effects, the
encrypted resumption cache and the HTTP wrapper around the game API.

Nothing in here runs inside the Flask app; it shares :mod:`enigma.rules` and
:mod:`enigma.errors` with the server so both sides speak one vocabulary.
"""

"""
Legal Aid Case Management Backend
=================================

REST backend for a legal-aid organization: staff (admins, lawyers) and
beneficiaries work on cases, judicial services, tasks, service requests
and their documents through one API.

The core is the authorization + workflow layer:
1. Identity resolution (who is calling)
2. Capability guards (may they do this to this record)
3. Status state machines (is this transition legal from here)
4. Visibility shaping (what part of the record may they see)
5. Notification fan-out (who hears about it)
"""

__version__ = "1.0.0"

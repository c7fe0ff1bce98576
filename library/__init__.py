"""library/ -- Documents and their public share links.

The document half is a thin collaborator (metadata rows + files on disk) that
exists so the share-link lifecycle has something real to point at. The
interesting part is library/shares.py.

Layer rule: library/ imports from core/ and auth/, never from api/.
"""

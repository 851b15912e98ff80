"""
Qrono backend package.

A FastAPI service for personal photo albums: users own albums, albums hold
memories, and memories hold photos plus a diary entry. Rows live in a
relational store and image bytes in a blob store; the two are kept in sync by
the resource service and the blob deletion sweeper.
"""

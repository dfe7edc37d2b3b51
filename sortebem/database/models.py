# sortebem/database/models.py

from datetime import datetime, timezone

from sortebem import db

# Every collection (raffles, payments, proofs, credentials, audit_log) is kept
# as JSON documents in a single table, one row per document.


def _utcnow():
    return datetime.now(timezone.utc)


class Document(db.Model):
    __tablename__ = 'documents'
    __table_args__ = (
        db.UniqueConstraint('collection', 'doc_id', name='uq_documents_collection_doc_id'),
    )

    id = db.Column(db.Integer, primary_key=True)  # insertion order within a collection
    collection = db.Column(db.String(40), nullable=False, index=True)
    doc_id = db.Column(db.String(64), nullable=False)
    body = db.Column(db.JSON, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f'<Document {self.collection}/{self.doc_id}>'

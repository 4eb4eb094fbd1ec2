from dotenv import load_dotenv

load_dotenv(override=False)

import argparse  # noqa: E402

from backend.app.db import SessionLocal, init_db  # noqa: E402
from backend.app import models  # noqa: E402
from backend.app.services.jobs import enqueue_job  # noqa: E402


def main():
    p = argparse.ArgumentParser(description="Queue a new processing run for every document")
    p.add_argument("--project-id", type=int, default=None, help="Only documents of this project")
    args = p.parse_args()

    init_db()
    db = SessionLocal()
    try:
        q = db.query(models.Document)
        if args.project_id is not None:
            q = q.filter(models.Document.project_id == args.project_id)
        docs = q.order_by(models.Document.id.asc()).all()
        for d in docs:
            enqueue_job(db, d.id)
        print(f"enqueued {len(docs)} documents")
    finally:
        db.close()

if __name__ == "__main__":
    main()

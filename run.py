from setlist_pickem import create_app, db
from setlist_pickem.models import Pick, Show, Song, Submission, Tour, User

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "User": User,
        "Tour": Tour,
        "Show": Show,
        "Song": Song,
        "Submission": Submission,
        "Pick": Pick,
    }


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)

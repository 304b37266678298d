import os
import time
from pathlib import Path

from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.utils import secure_filename

from songmatch import open_store
from songmatch.database import FingerprintDatabase
from songmatch.config import ServerConfig
from songmatch.errors import (
    DuplicateSongError,
    InvalidInputError,
    SongMatchError,
    SongNotFoundError,
)
from songmatch.fallback import FallbackClient
from songmatch.logging_config import setup_logger
from songmatch.protocol import parse_fingerprint_payload, serialize_matches
from songmatch.recognizer import Recognizer
from songmatch.registrar import CatalogRegistrar

logger = setup_logger(__name__)


def _recognition_response(recognition):
    body = {
        "success": bool(recognition.matches),
        "matches": serialize_matches(recognition.matches),
        "inconclusive": recognition.inconclusive,
        "source": recognition.source,
        "numHashes": recognition.query_hashes,
        "queryTime": round(recognition.query_time * 1000, 1),
    }
    if recognition.external_track_id:
        body["externalTrackId"] = recognition.external_track_id
        body["catalogSong"] = (
            recognition.catalog_song.to_dict() if recognition.catalog_song else None
        )
    if not recognition.matches and not recognition.external_track_id:
        body["message"] = "No match found"
    return body


def _save_upload(upload_folder, prefix):
    if "file" not in request.files:
        raise InvalidInputError("No file")
    file = request.files["file"]
    filename = secure_filename(file.filename or "") or "audio"
    filepath = os.path.join(upload_folder, f"{prefix}_{time.time()}_{filename}")
    file.save(filepath)
    return file, filepath


def create_app(store=None, fallback=None, timeout=None):
    """
    Build the HTTP transport around an explicitly owned store.

    Args:
        store: FingerprintStore (opened from ServerConfig when omitted)
        fallback: Optional FallbackClient for inconclusive queries
        timeout: Per-query deadline in seconds
    """
    app = Flask(__name__)
    CORS(app)

    app.config["MAX_CONTENT_LENGTH"] = ServerConfig.MAX_CONTENT_LENGTH
    app.config["UPLOAD_FOLDER"] = ServerConfig.UPLOAD_FOLDER
    Path(app.config["UPLOAD_FOLDER"]).mkdir(parents=True, exist_ok=True)

    store = store if store is not None else open_store()
    registrar = CatalogRegistrar(store)
    recognizer = Recognizer(
        store,
        fallback=fallback,
        timeout=ServerConfig.QUERY_TIMEOUT if timeout is None else timeout,
    )
    app.extensions["songmatch"] = {
        "store": store,
        "registrar": registrar,
        "recognizer": recognizer,
    }

    def persist():
        # the in-memory store only survives restarts through its snapshot
        if isinstance(store, FingerprintDatabase):
            store.save()

    @app.errorhandler(SongMatchError)
    def handle_songmatch_error(e):
        if not e.user_facing:
            logger.error(f"Internal error: {e}")
            return jsonify({"success": False, "message": "Internal server error"}), 500

        status = 400
        if isinstance(e, DuplicateSongError):
            status = 409
        elif isinstance(e, SongNotFoundError):
            status = 404
        logger.info(f"Rejected request: {e}")
        return jsonify({"success": False, "message": e.message}), status

    @app.route("/api/status")
    def api_status():
        return jsonify({"status": "ok", "totalSongs": store.total_songs()})

    @app.route("/api/songs")
    def api_songs():
        return jsonify({"songs": [song.to_dict() for song in store.all_songs()]})

    @app.route("/api/external-refs")
    def api_external_refs():
        return jsonify({"externalRefs": store.all_external_refs()})

    @app.route("/api/match", methods=["POST"])
    def api_match():
        fingerprint = parse_fingerprint_payload(request.get_json(silent=True))
        recognition = recognizer.identify_fingerprint(fingerprint)
        return jsonify(_recognition_response(recognition))

    @app.route("/api/identify", methods=["POST"])
    def api_identify():
        _, filepath = _save_upload(app.config["UPLOAD_FOLDER"], "upload")
        try:
            recognition = recognizer.identify_file(filepath)
        finally:
            os.remove(filepath)
        return jsonify(_recognition_response(recognition))

    @app.route("/api/add-song", methods=["POST"])
    def api_add_song():
        file, filepath = _save_upload(app.config["UPLOAD_FOLDER"], "song")
        try:
            song = registrar.register_file(
                filepath,
                title=request.form.get("title") or Path(file.filename or "").stem,
                artist=request.form.get("artist") or "Unknown",
                external_ref=request.form.get("externalRef") or None,
            )
        finally:
            os.remove(filepath)
        persist()
        return jsonify({"success": True, "song": song.to_dict()}), 201

    @app.route("/api/songs/<int:song_id>/external-ref", methods=["PUT"])
    def api_set_external_ref(song_id):
        payload = request.get_json(silent=True) or {}
        external_ref = payload.get("externalRef")
        if not isinstance(external_ref, str) or not external_ref:
            raise InvalidInputError("'externalRef' must be a non-empty string")
        song = store.set_external_ref(song_id, external_ref)
        persist()
        return jsonify({"success": True, "song": song.to_dict()})

    @app.route("/api/songs/<int:song_id>", methods=["DELETE"])
    def api_delete_song(song_id):
        registrar.delete(song_id)
        persist()
        return jsonify({"success": True, "songID": song_id})

    return app


def main():
    store = open_store()
    logger.info(f"✓ Store opened: {store.total_songs()} songs")

    fallback = FallbackClient.from_config()
    if fallback is None:
        logger.info("External recognition fallback not configured")

    app = create_app(store, fallback=fallback)

    logger.info(f"🌐 Starting web server at http://{ServerConfig.HOST}:{ServerConfig.PORT}")
    app.run(host=ServerConfig.HOST, port=ServerConfig.PORT, debug=False)


if __name__ == "__main__":
    main()

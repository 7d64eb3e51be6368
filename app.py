import logging

from flask import Flask, jsonify, render_template, request
from flask_socketio import SocketIO, emit

import config
from render_surface import SocketIORenderSurface
from response_session import SessionTiming
from scene_corpus import load_corpus
from scene_matcher import resolve_prompt
from submission_controller import SubmissionController
from timers import SocketIOScheduler

logger = logging.getLogger(__name__)


def create_app(corpus=None, timing=None, scheduler=None):
    """Flask + Socket.IO アプリケーションを構築する。

    corpus を省略すると SCENES_JSON_PATH から読み込む（失敗時は空のコーパス）。
    """
    app = Flask(__name__)
    app.config['SECRET_KEY'] = config.SECRET_KEY
    socketio = SocketIO(app, cors_allowed_origins="*")

    if corpus is None:
        corpus = load_corpus(config.SCENES_JSON_PATH, config.SCENES_FETCH_TIMEOUT)
    if timing is None:
        timing = SessionTiming.from_config()
    if scheduler is None:
        scheduler = SocketIOScheduler(socketio)

    # クライアント(sid)ごとの送信コントローラー
    controllers = {}

    app.config['SCENE_CORPUS'] = corpus
    app.config['SESSION_TIMING'] = timing
    app.config['SCHEDULER'] = scheduler
    app.config['CONTROLLERS'] = controllers

    @app.route('/')
    def index():
        return render_template('index.html', thinking_label=timing.thinking_label)

    @app.route('/api/status')
    def status():
        return jsonify({
            "ok": True,
            "scenes": len(corpus),
            "source": corpus.source,
            "clients": len(controllers),
        })

    @app.route('/api/match', methods=['POST'])
    def match():
        """アニメーションなしでマッチ結果だけを返す"""
        try:
            data = request.get_json(force=True, silent=True) or {}
            text = data.get('text')
            if not isinstance(text, str) or not text.strip():
                return jsonify({"ok": False, "error": "textが空です"}), 400
            outcome = resolve_prompt(corpus, text)
            return jsonify({
                "ok": True,
                "kind": outcome.kind,
                "text": outcome.text(timing.no_match_text, timing.no_pair_text),
                "matched_id": outcome.matched_id,
                "paired_id": outcome.paired_id,
            })
        except Exception as e:
            logger.exception("マッチAPIでエラーが発生しました")
            return jsonify({"ok": False, "error": str(e)}), 500

    def current_controller():
        return controllers.get(request.sid)

    @socketio.on('connect')
    def handle_connect():
        session_id = request.sid
        surface = SocketIORenderSurface(socketio, session_id)
        controllers[session_id] = SubmissionController(corpus, surface, scheduler, timing)
        logger.info(f"クライアント接続: {session_id}")

    @socketio.on('disconnect')
    def handle_disconnect(*args):
        session_id = request.sid
        controller = controllers.pop(session_id, None)
        if controller is not None:
            scheduler.run_serialized(controller.cancel_active)
        logger.info(f"クライアント切断: {session_id}")

    @socketio.on('submit')
    def handle_submit(data):
        try:
            controller = current_controller()
            if controller is None:
                emit('error', {'message': 'セッションが見つかりません'})
                return
            text = data.get('text') if isinstance(data, dict) else data
            scheduler.run_serialized(controller.submit, text)
        except Exception as e:
            logger.exception("送信処理でエラーが発生しました")
            emit('error', {'message': f'エラーが発生しました: {str(e)}'})

    @socketio.on('retry')
    def handle_retry(*args):
        try:
            controller = current_controller()
            if controller is None:
                emit('error', {'message': 'セッションが見つかりません'})
                return
            scheduler.run_serialized(controller.retry)
        except Exception as e:
            logger.exception("再試行処理でエラーが発生しました")
            emit('error', {'message': f'エラーが発生しました: {str(e)}'})

    @socketio.on('state')
    def handle_state(*args):
        controller = current_controller()
        if controller is None:
            emit('state', {'connected': False})
            return
        snapshot = scheduler.run_serialized(controller.snapshot)
        emit('state', dict(snapshot, connected=True))

    return app


def main():
    logging.basicConfig(level=config.LOG_LEVEL)
    app = create_app()
    socketio = app.extensions['socketio']
    corpus = app.config['SCENE_CORPUS']

    if len(corpus) == 0:
        print(f"警告: シーンが読み込まれていません ({config.SCENES_JSON_PATH})")
        print("すべての入力は「一致なし」として応答されます")

    print("=" * 50)
    print("🌐 アプリケーションが起動しました！")
    print(f"📚 シーン数: {len(corpus)}")
    print(f"📱 ブラウザで http://localhost:{config.PORT} にアクセスしてください")
    print("=" * 50)

    socketio.run(app, debug=config.DEBUG, host=config.HOST, port=config.PORT,
                 allow_unsafe_werkzeug=True)


if __name__ == '__main__':
    main()

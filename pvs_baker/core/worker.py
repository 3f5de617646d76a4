"""
Background bake worker.

BakeWorker runs one BakeOrchestrator call off the caller's thread. A bake
can take hours on a large scene, and an editor or viewer with a Qt event
loop has to keep drawing while it runs.

The orchestrator's state listener and progress sink are bridged to Qt
signals. A host connects to those signals and never reads the
orchestrator while the worker is running; grid and store are safe to
read once bake_finished or error has fired.

The caller builds the orchestrator (scene loading, settings, ray tracing
service), so the worker holds no scene logic of its own.
"""

from PySide6.QtCore import QThread, Signal

from pvs_baker.core.baker import BakeOrchestrator, BakeProgress


class BakeWorker(QThread):
    """
    Runs a full or resumable bake on a background thread.

    Signals:
        state_changed(str)            Orchestrator state (BakeState value).
        progress(int, int, int, int)  (current_object, total_objects,
                                      current_cell, total_cells).
        batch_finished(int, int)      (start, stop) after each batch in
                                      resumable mode.
        error(str)                    Bake failed; payload is the message.
        bake_finished(object)         BakeReport once the run ends
                                      (completed or cancelled).
    """

    state_changed = Signal(str)
    progress = Signal(int, int, int, int)
    batch_finished = Signal(int, int)
    error = Signal(str)
    bake_finished = Signal(object)

    def __init__(self, orchestrator: BakeOrchestrator, batch_size: int | None = None):
        super().__init__()
        self._orchestrator = orchestrator
        self._batch_size = batch_size
        self._orchestrator.add_state_listener(self.state_changed.emit)

        # Returned by the progress sink; the orchestrator checks it before
        # each X-axis sweep of the current object.
        self._cancelled = False

    def cancel(self):
        """Request cancellation. Takes effect at the next sweep checkpoint."""
        self._cancelled = True

    def run(self):
        """
        Execute the bake.

        Runs on the BACKGROUND THREAD. Any exception stops the run and is
        reported through the error signal; bake_finished is not emitted then.
        """
        try:
            if self._batch_size is None:
                report = self._orchestrator.bake(on_progress=self._on_progress)
            else:
                report = self._orchestrator.bake_in_batches(
                    self._batch_size,
                    on_progress=self._on_progress,
                    on_batch_done=self.batch_finished.emit,
                )
        except Exception as e:
            self.error.emit(str(e))
            return

        self.bake_finished.emit(report)

    def _on_progress(self, progress: BakeProgress) -> bool:
        self.progress.emit(
            progress.current_object, progress.total_objects,
            progress.current_cell, progress.total_cells,
        )
        return self._cancelled

from gitviewer.app import main

main()
